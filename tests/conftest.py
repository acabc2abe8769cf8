"""Shared test fixtures."""

from __future__ import annotations

import io
import json
import sys
from pathlib import Path
from typing import Any

import pytest

from site2ts.rpc.server import RpcServer
from site2ts.stages import StageHandlers
from site2ts.store import ArtifactStore
from site2ts.worker import echo_worker

ECHO_WORKER_COMMAND: tuple[str, ...] = (sys.executable, "-m", "site2ts.worker.echo_worker")


def echo_worker_command(*extra: str) -> tuple[str, ...]:
    return (*ECHO_WORKER_COMMAND, *extra)


class FakeWorker:
    """In-process worker reusing the echo worker's result shapes."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.omit_ids = False
        self.errors: dict[str, Exception] = {}
        self.overrides: dict[str, dict[str, Any]] = {}

    def call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((method, params))
        if method in self.errors:
            raise self.errors[method]
        if method in self.overrides:
            return dict(self.overrides[method])
        result = echo_worker.HANDLERS[method](params)
        if self.omit_ids:
            result = {k: v for k, v in result.items() if k not in echo_worker.ID_FIELDS}
        return result

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


class ServerHarness:
    """RpcServer bound to an in-memory output buffer."""

    def __init__(self, server: RpcServer, output: io.StringIO) -> None:
        self.server = server
        self.output = output

    def send(self, *lines: str | bytes) -> list[dict[str, Any]]:
        start = len(self.output.getvalue())
        self.server.serve(list(lines))
        written = self.output.getvalue()[start:]
        return [json.loads(line) for line in written.splitlines()]

    def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        request_id: Any = 1,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
        if params is not None:
            payload["params"] = params
        (response,) = self.send(json.dumps(payload))
        return response


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / ".site2ts"


@pytest.fixture()
def store(state_dir: Path) -> ArtifactStore:
    return ArtifactStore(state_dir)


@pytest.fixture()
def fake_worker() -> FakeWorker:
    return FakeWorker()


@pytest.fixture()
def handlers(fake_worker: FakeWorker, store: ArtifactStore) -> StageHandlers:
    return StageHandlers(
        worker=fake_worker,
        store=store,
        pinned_versions={"next": "14.2.5", "typescript": "5.5.4"},
    )


@pytest.fixture()
def harness(handlers: StageHandlers) -> ServerHarness:
    output = io.StringIO()
    return ServerHarness(RpcServer(handlers.table(), output), output)


@pytest.fixture()
def echo_command():
    """Builder for the echo worker launch command, with optional extra flags."""

    return echo_worker_command
