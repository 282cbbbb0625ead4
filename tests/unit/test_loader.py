"""Tests for the workspace loader."""

import json
import shutil
from pathlib import Path

import pytest

from waveflow.exceptions import FlowNotFoundError, FlowValidationError, WorkspaceError
from waveflow.loader import WorkspaceLoader
from waveflow.models import (
    ApiKeyAuth,
    BasicAuth,
    BodyRule,
    Flow,
    FlowNode,
    StatusCondition,
    TimeRule,
)


@pytest.fixture
def workspace_copy(tmp_path: Path, workspace_dir: Path) -> Path:
    target = tmp_path / "workspace"
    shutil.copytree(workspace_dir, target)
    return target


class TestFlows:
    def test_load_from_fixture(self, workspace_dir: Path) -> None:
        flow = WorkspaceLoader(workspace_dir).load("login_chain")
        assert flow.id == "login_chain"
        assert [n.alias for n in flow.nodes] == ["auth", "profile", "orders"]
        assert flow.default_env_id == "env-dev"
        assert isinstance(flow.connectors[1].condition, StatusCondition)

    def test_load_caches(self, workspace_dir: Path) -> None:
        loader = WorkspaceLoader(workspace_dir)
        assert loader.load("login_chain") is loader.load("login_chain")

    def test_reload_bypasses_cache(self, workspace_dir: Path) -> None:
        loader = WorkspaceLoader(workspace_dir)
        assert loader.load("login_chain") is not loader.reload("login_chain")

    def test_load_not_found_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FlowNotFoundError):
            WorkspaceLoader(tmp_path).load("nonexistent")

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "flows").mkdir()
        (tmp_path / "flows" / "bad.flow.json").write_text("not json{")
        with pytest.raises(FlowValidationError):
            WorkspaceLoader(tmp_path).load("bad")

    def test_load_invalid_shape(self, tmp_path: Path) -> None:
        (tmp_path / "flows").mkdir()
        (tmp_path / "flows" / "odd.flow.json").write_text(json.dumps({"id": "odd"}))
        with pytest.raises(FlowValidationError):
            WorkspaceLoader(tmp_path).load("odd")

    def test_file_name_need_not_match_id(self, tmp_path: Path) -> None:
        nested = tmp_path / "flows" / "team"
        nested.mkdir(parents=True)
        (nested / "renamed.flow.json").write_text(
            json.dumps({"id": "real-id", "name": "Real", "nodes": []})
        )
        assert WorkspaceLoader(tmp_path).load("real-id").name == "Real"

    def test_load_all_skips_bad_files(self, workspace_copy: Path) -> None:
        (workspace_copy / "flows" / "broken.flow.json").write_text("{")
        flows = WorkspaceLoader(workspace_copy).load_all()
        assert sorted(flows) == ["login_chain", "status_check"]

    def test_load_all_without_flows_dir(self, tmp_path: Path) -> None:
        assert WorkspaceLoader(tmp_path).load_all() == {}

    def test_save(self, tmp_path: Path) -> None:
        flow = Flow(
            id="saved_flow",
            name="Saved",
            nodes=[FlowNode(id="n1", request_id="r1", alias="first")],
        )
        loader = WorkspaceLoader(tmp_path)
        path = loader.save(flow)
        assert path.name == "saved_flow.flow.json"
        assert json.loads(path.read_text())["nodes"][0]["requestId"] == "r1"
        assert loader.reload("saved_flow").nodes[0].alias == "first"


class TestWorkspaceData:
    def test_collections_carry_filename(self, workspace_dir: Path) -> None:
        collections = WorkspaceLoader(workspace_dir).load_collections()
        assert [c.filename for c in collections] == ["api.json"]
        assert collections[0].info.name == "Example API"

    def test_environments(self, workspace_dir: Path) -> None:
        environments = WorkspaceLoader(workspace_dir).load_environments()
        assert sorted(e.id for e in environments) == ["env-dev", "env-global"]

    def test_auths(self, workspace_dir: Path) -> None:
        auths = WorkspaceLoader(workspace_dir).load_auths()
        assert isinstance(auths[0], ApiKeyAuth)
        assert auths[0].domain_filters == ["*.example.com"]
        assert isinstance(auths[1], BasicAuth)
        assert auths[1].enabled is False

    def test_missing_sections_are_empty(self, tmp_path: Path) -> None:
        loader = WorkspaceLoader(tmp_path)
        assert loader.load_collections() == []
        assert loader.load_environments() == []
        assert loader.load_auths() == []

    def test_validation_rules(self, workspace_dir: Path) -> None:
        rules = WorkspaceLoader(workspace_dir).load_validation_rules()
        assert [r.id for r in rules] == ["body-ok", "fast"]
        assert isinstance(rules[0], BodyRule)
        assert isinstance(rules[1], TimeRule)

    def test_invalid_validation_rules_raise(self, tmp_path: Path) -> None:
        (tmp_path / "validation_rules.json").write_text(
            json.dumps([{"id": "x", "category": "cookie"}])
        )
        with pytest.raises(WorkspaceError):
            WorkspaceLoader(tmp_path).load_validation_rules()

    def test_invalid_auths_raise(self, tmp_path: Path) -> None:
        (tmp_path / "auths.json").write_text(json.dumps([{"id": "x", "type": "nope"}]))
        with pytest.raises(WorkspaceError):
            WorkspaceLoader(tmp_path).load_auths()

    def test_invalid_collection_json_raises(self, tmp_path: Path) -> None:
        (tmp_path / "collections").mkdir()
        (tmp_path / "collections" / "bad.json").write_text("[")
        with pytest.raises(WorkspaceError):
            WorkspaceLoader(tmp_path).load_collections()
