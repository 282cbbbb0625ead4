"""Workspace loader for flows, collections, environments and auths."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from waveflow.exceptions import FlowNotFoundError, FlowValidationError, WorkspaceError
from waveflow.logger import get_logger
from waveflow.models import Auth, Collection, Environment, Flow, ValidationRule

log = get_logger(__name__)

_AUTH_LIST = TypeAdapter(list[Auth])
_RULE_LIST = TypeAdapter(list[ValidationRule])

FLOW_SUFFIX = ".flow.json"


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise WorkspaceError(str(path), f"Invalid JSON: {exc}") from exc
    except OSError as exc:
        raise WorkspaceError(str(path), str(exc)) from exc


class WorkspaceLoader:
    """Reads a workspace directory laid out as::

        flows/*.flow.json
        collections/*.json
        environments/*.json
        auths.json
        validation_rules.json
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.flows_dir = self.root / "flows"
        self.collections_dir = self.root / "collections"
        self.environments_dir = self.root / "environments"
        self.auths_path = self.root / "auths.json"
        self.validation_rules_path = self.root / "validation_rules.json"
        self._cache: dict[str, Flow] = {}

    # --- Flows ---

    def load(self, flow_id: str) -> Flow:
        """Load a flow by ID, using cache if available."""
        if flow_id in self._cache:
            return self._cache[flow_id]
        return self.reload(flow_id)

    def reload(self, flow_id: str) -> Flow:
        """Load a flow from disk, bypassing cache."""
        path = self._find_flow_file(flow_id)
        try:
            flow = Flow.model_validate(_read_json(path))
        except WorkspaceError as exc:
            raise FlowValidationError(flow_id, exc.detail) from exc
        except ValidationError as exc:
            raise FlowValidationError(flow_id, str(exc)) from exc
        self._cache[flow.id] = flow
        log.info("flow_loaded", flow_id=flow.id, path=str(path))
        return flow

    def load_all(self) -> dict[str, Flow]:
        """Load every flow; unreadable files are logged and skipped."""
        flows: dict[str, Flow] = {}
        if not self.flows_dir.is_dir():
            return flows
        for path in sorted(self.flows_dir.rglob(f"*{FLOW_SUFFIX}")):
            try:
                flow = Flow.model_validate(_read_json(path))
            except (WorkspaceError, ValidationError) as exc:
                log.warning("flow_load_failed", path=str(path), error=str(exc))
                continue
            flows[flow.id] = flow
            self._cache[flow.id] = flow
        return flows

    def save(self, flow: Flow) -> Path:
        """Write a flow to ``flows/<id>.flow.json``."""
        self.flows_dir.mkdir(parents=True, exist_ok=True)
        path = self.flows_dir / f"{flow.id}{FLOW_SUFFIX}"
        path.write_text(
            flow.model_dump_json(indent=2, by_alias=True, exclude_none=True),
            encoding="utf-8",
        )
        self._cache[flow.id] = flow
        log.info("flow_saved", flow_id=flow.id, path=str(path))
        return path

    def _find_flow_file(self, flow_id: str) -> Path:
        direct = self.flows_dir / f"{flow_id}{FLOW_SUFFIX}"
        if direct.exists():
            return direct
        if self.flows_dir.is_dir():
            for path in self.flows_dir.rglob(f"{flow_id}{FLOW_SUFFIX}"):
                return path
            # file names need not match ids
            for path in self.flows_dir.rglob(f"*{FLOW_SUFFIX}"):
                try:
                    data = _read_json(path)
                except WorkspaceError:
                    continue
                if isinstance(data, dict) and data.get("id") == flow_id:
                    return path
        raise FlowNotFoundError(flow_id)

    # --- Collections, environments, auths ---

    def load_collections(self) -> list[Collection]:
        collections: list[Collection] = []
        if not self.collections_dir.is_dir():
            return collections
        for path in sorted(self.collections_dir.glob("*.json")):
            try:
                collection = Collection.model_validate(_read_json(path))
            except ValidationError as exc:
                raise WorkspaceError(str(path), str(exc)) from exc
            collection.filename = path.name
            collections.append(collection)
        log.debug("collections_loaded", count=len(collections))
        return collections

    def load_environments(self) -> list[Environment]:
        environments: list[Environment] = []
        if not self.environments_dir.is_dir():
            return environments
        for path in sorted(self.environments_dir.glob("*.json")):
            try:
                environments.append(Environment.model_validate(_read_json(path)))
            except ValidationError as exc:
                raise WorkspaceError(str(path), str(exc)) from exc
        log.debug("environments_loaded", count=len(environments))
        return environments

    def load_auths(self) -> list[Auth]:
        if not self.auths_path.exists():
            return []
        try:
            return _AUTH_LIST.validate_python(_read_json(self.auths_path))
        except ValidationError as exc:
            raise WorkspaceError(str(self.auths_path), str(exc)) from exc

    def load_validation_rules(self) -> list[ValidationRule]:
        """Shared rules that request validations reference by ``ruleId``."""
        if not self.validation_rules_path.exists():
            return []
        try:
            rules = _RULE_LIST.validate_python(_read_json(self.validation_rules_path))
        except ValidationError as exc:
            raise WorkspaceError(str(self.validation_rules_path), str(exc)) from exc
        log.debug("validation_rules_loaded", count=len(rules))
        return rules
