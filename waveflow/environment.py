"""Environment variable layering and auth selection."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

import httpx

from waveflow.logger import get_logger
from waveflow.models import Auth, Environment, ValidationRule

log = get_logger(__name__)

GLOBAL_ENVIRONMENT = "global"


def is_url_in_domains(url: str, domains: Iterable[str]) -> bool:
    """Match a URL's host against domain filters.

    ``example.com`` matches exactly; ``*.example.com`` and ``.example.com``
    match the base domain and any subdomain.
    """
    try:
        host = httpx.URL(url).host.lower()
    except httpx.InvalidURL:
        return False
    if not host:
        return False
    for domain in domains:
        pattern = domain.strip().lower()
        if not pattern:
            continue
        if pattern.startswith("*.") or pattern.startswith("."):
            base = pattern.lstrip("*").lstrip(".")
            if host == base or host.endswith("." + base):
                return True
        elif host == pattern:
            return True
    return False


class EnvironmentStore:
    """Read-only view over environments and auth configurations."""

    def __init__(
        self,
        environments: Iterable[Environment] = (),
        auths: Iterable[Auth] = (),
        validation_rules: Iterable[ValidationRule] = (),
    ) -> None:
        self.environments = list(environments)
        self.auths = list(auths)
        self.validation_rules = list(validation_rules)

    def find_environment(self, environment_id: str | None) -> Environment | None:
        if not environment_id:
            return None
        return next((e for e in self.environments if e.id == environment_id), None)

    def global_environment(self) -> Environment | None:
        return next(
            (e for e in self.environments if e.name.lower() == GLOBAL_ENVIRONMENT),
            None,
        )

    def variables(
        self,
        environment_id: str | None,
        overrides: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Global values, then the selected environment, then ``overrides``."""
        merged: dict[str, str] = {}
        layers = [self.global_environment(), self.find_environment(environment_id)]
        for env in layers:
            if env is None:
                continue
            for var in env.values:
                if var.enabled and var.key:
                    merged[var.key] = var.value
        if overrides:
            merged.update(overrides)
        return merged

    def shared_rules(self) -> dict[str, ValidationRule]:
        """Workspace validation rules by id, for request rule references."""
        return {rule.id: rule for rule in self.validation_rules}

    def find_auth(self, auth_id: str | None) -> Auth | None:
        if not auth_id:
            return None
        return next((a for a in self.auths if a.id == auth_id), None)

    def auth_for_request(
        self, auth_id: str | None, url: str, now: datetime | None = None
    ) -> Auth | None:
        """The auth to apply, or None if it is missing, disabled, expired or out of domain."""
        auth = self.find_auth(auth_id)
        if auth is None:
            if auth_id:
                log.debug("auth_not_found", auth_id=auth_id)
            return None
        if not auth.enabled:
            log.debug("auth_disabled", auth_id=auth.id)
            return None
        now = now or datetime.now(tz=timezone.utc)
        if auth.expiry_date is not None:
            expiry = auth.expiry_date
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if expiry <= now:
                log.debug("auth_expired", auth_id=auth.id)
                return None
        if auth.domain_filters and not is_url_in_domains(url, auth.domain_filters):
            log.debug("auth_domain_mismatch", auth_id=auth.id, url=url)
            return None
        return auth
