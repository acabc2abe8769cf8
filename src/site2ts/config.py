"""Runtime configuration for the control plane and its worker."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_WORKER_COMMAND: tuple[str, ...] = ("node", "node/site2ts-worker/dist/index.js")

DEFAULT_PINNED_VERSIONS: dict[str, str] = {
    "node": "20.15.1",
    "next": "14.2.5",
    "react": "18.3.1",
    "react-dom": "18.3.1",
    "typescript": "5.5.4",
    "tailwindcss": "3.4.10",
    "playwright": "1.46.0",
    "eslint": "8.57.0",
}


@dataclass(slots=True)
class WorkerSettings:
    """How to launch the external worker process."""

    command: tuple[str, ...] = DEFAULT_WORKER_COMMAND


@dataclass(slots=True)
class PinSettings:
    """Exact tool versions recorded by ``init``."""

    versions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PINNED_VERSIONS))


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_root: Path = Path(".")
    state_dir_name: str = ".site2ts"
    log_level: str = "INFO"
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    pins: PinSettings = field(default_factory=PinSettings)

    @property
    def state_dir(self) -> Path:
        """Root of the hidden working directory, for example ``./.site2ts``."""

        return self.project_root / self.state_dir_name

    @classmethod
    def from_env(
        cls,
        project_root: Path | None = None,
        worker_command: str | None = None,
        log_level: str | None = None,
    ) -> Settings:
        """Load settings from environment; explicit arguments win over env vars."""

        command_raw = worker_command or os.getenv("SITE2TS_WORKER_COMMAND", "")
        command = _split_command(command_raw) if command_raw.strip() else DEFAULT_WORKER_COMMAND
        return cls(
            project_root=project_root or Path(os.getenv("SITE2TS_PROJECT_ROOT", ".")),
            state_dir_name=os.getenv("SITE2TS_STATE_DIR", ".site2ts"),
            log_level=(log_level or os.getenv("SITE2TS_LOG_LEVEL", "INFO")).upper(),
            worker=WorkerSettings(command=command),
            pins=PinSettings(versions=_collect_pinned_versions()),
        )

    def validate(self) -> None:
        """Raise configuration error if settings cannot drive a server."""

        if not self.worker.command:
            raise ValueError("SITE2TS_WORKER_COMMAND rendered an empty command.")
        if not self.state_dir_name.strip():
            raise ValueError("SITE2TS_STATE_DIR must be a non-empty directory name.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid SITE2TS_LOG_LEVEL: {self.log_level!r}")


def _split_command(raw: str) -> tuple[str, ...]:
    try:
        return tuple(shlex.split(raw))
    except ValueError as error:
        raise ValueError(f"Invalid SITE2TS_WORKER_COMMAND: {raw!r}") from error


def _collect_pinned_versions() -> dict[str, str]:
    versions = dict(DEFAULT_PINNED_VERSIONS)
    for tool in DEFAULT_PINNED_VERSIONS:
        env_name = "SITE2TS_PIN_" + tool.upper().replace("-", "_")
        override = os.getenv(env_name, "").strip()
        if override:
            versions[tool] = override
    return versions
