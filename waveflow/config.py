"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Engine and server configuration."""

    workspace_dir: str = "workspace"
    request_timeout: float = 30.0
    verify_ssl: bool = True
    parallel: bool = True
    idle_wait: float = 0.05
    max_idle_rounds: int = 100
    log_level: str = "INFO"
    log_json: bool = False
    host: str = "127.0.0.1"
    port: int = 8002

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from WAVEFLOW_* environment variables."""
        return cls(
            workspace_dir=os.environ.get("WAVEFLOW_WORKSPACE", "workspace"),
            request_timeout=float(os.environ.get("WAVEFLOW_REQUEST_TIMEOUT", "30")),
            verify_ssl=os.environ.get("WAVEFLOW_VERIFY_SSL", "true").lower() == "true",
            parallel=os.environ.get("WAVEFLOW_PARALLEL", "true").lower() == "true",
            idle_wait=float(os.environ.get("WAVEFLOW_IDLE_WAIT", "0.05")),
            max_idle_rounds=int(os.environ.get("WAVEFLOW_MAX_IDLE_ROUNDS", "100")),
            log_level=os.environ.get("WAVEFLOW_LOG_LEVEL", "INFO"),
            log_json=os.environ.get("WAVEFLOW_LOG_JSON", "false").lower() == "true",
            host=os.environ.get("WAVEFLOW_HOST", "127.0.0.1"),
            port=int(os.environ.get("WAVEFLOW_PORT", "8002")),
        )
