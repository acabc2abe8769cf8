"""Controllers for control-plane CLI commands."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from site2ts.config import Settings
from site2ts.rpc.server import RpcServer
from site2ts.stages import StageHandlers
from site2ts.store import ArtifactStore
from site2ts.worker import WorkerSupervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the stdio JSON-RPC server."""

    project_root: Path | None
    worker_command: str | None


@dataclass(slots=True)
class CallCommand:
    """CLI input for a single request."""

    project_root: Path | None
    worker_command: str | None
    request: str


@dataclass(slots=True)
class FlowCommand:
    """CLI input for the end-to-end stage sequence."""

    project_root: Path | None
    worker_command: str | None
    start_url: str
    max_pages: int
    max_depth: int
    apply: bool


@dataclass(slots=True)
class FlowResult:
    """Flow report to render in CLI."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class ControlPlane:
    """Wired server, handlers and supervisor for one process."""

    settings: Settings
    supervisor: WorkerSupervisor
    handlers: StageHandlers
    server: RpcServer


def build_control_plane(settings: Settings, output: TextIO) -> ControlPlane:
    """Construct the supervisor and handlers and route worker progress to ``output``."""

    settings.validate()
    store = ArtifactStore(settings.state_dir)
    supervisor = WorkerSupervisor(settings.worker.command, cwd=settings.project_root)
    handlers = StageHandlers(
        worker=supervisor,
        store=store,
        pinned_versions=settings.pins.versions,
    )
    server = RpcServer(handlers.table(), output)
    supervisor.set_progress_sink(server.write_raw)
    return ControlPlane(settings=settings, supervisor=supervisor, handlers=handlers, server=server)


class ControlPlaneCliController:
    """Coordinates the serve, call and flow CLI operations."""

    def serve(
        self,
        command: ServeCommand,
        lines: Iterable[str | bytes],
        output: TextIO,
    ) -> int:
        settings = _settings(command.project_root, command.worker_command)
        with _control_plane(settings, output) as plane:
            logger.info("Serving JSON-RPC on stdio state_dir=%s", settings.state_dir)
            return plane.server.serve(lines)

    def call(self, command: CallCommand) -> list[str]:
        settings = _settings(command.project_root, command.worker_command)
        buffer = io.StringIO()
        with _control_plane(settings, buffer) as plane:
            plane.server.serve([command.request])
        return buffer.getvalue().splitlines()

    def flow(self, command: FlowCommand) -> FlowResult:
        settings = _settings(command.project_root, command.worker_command)
        buffer = io.StringIO()
        lines: list[str] = []
        with _control_plane(settings, buffer) as plane:
            runner = _FlowRunner(plane.server, buffer, lines)
            try:
                runner.step("init", {"projectRoot": str(settings.project_root)})
                crawl = runner.step(
                    "crawl",
                    {
                        "startUrl": command.start_url,
                        "maxPages": command.max_pages,
                        "maxDepth": command.max_depth,
                    },
                )
                analysis = runner.step("analyze", {"siteMapId": crawl["siteMapId"]})
                scaffold = runner.step(
                    "scaffold",
                    {"analysisId": analysis["analysisId"], "appRouter": True},
                )
                generation = runner.step(
                    "generate",
                    {
                        "analysisId": analysis["analysisId"],
                        "scaffoldId": scaffold["scaffoldId"],
                        "tailwindMode": "full",
                    },
                )
                generation_id = generation["generationId"]
                runner.step("diff", {"generationId": generation_id})
                runner.step("audit", {"generationId": generation_id})
                runner.step("apply", {"generationId": generation_id, "dryRun": not command.apply})
            except _FlowStepError:
                return FlowResult(lines=lines, success=False)
        lines.append(f"[flow] done. Generation: {generation_id}")
        return FlowResult(lines=lines, success=True)


class _FlowStepError(Exception):
    pass


class _FlowRunner:
    def __init__(self, server: RpcServer, progress: io.StringIO, lines: list[str]) -> None:
        self.server = server
        self.progress = progress
        self.lines = lines
        self.next_id = 1

    def step(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request = {"jsonrpc": "2.0", "method": method, "params": params, "id": self.next_id}
        self.next_id += 1
        self.lines.append(f"[flow] {method} =>")
        response = self.server.dispatch(request)
        self.lines.extend(self.progress.getvalue().splitlines())
        self.progress.seek(0)
        self.progress.truncate()
        self.lines.append(json.dumps(response, ensure_ascii=False))
        if "error" in response:
            self.lines.append(f"[flow] {method} failed: {response['error'].get('message')}")
            raise _FlowStepError(method)
        return response["result"]


def _settings(project_root: Path | None, worker_command: str | None) -> Settings:
    return Settings.from_env(project_root=project_root, worker_command=worker_command)


@contextmanager
def _control_plane(settings: Settings, output: TextIO) -> Iterator[ControlPlane]:
    plane = build_control_plane(settings, output)
    try:
        yield plane
    finally:
        plane.supervisor.close()
