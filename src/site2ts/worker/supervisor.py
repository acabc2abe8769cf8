"""Supervisor for the single long-lived worker process.

The worker speaks line-delimited JSON-RPC on its stdin/stdout. Replies are
matched to requests by arrival order, not by the echoed id, which is only
sound because :meth:`WorkerSupervisor.call` holds one lock for the full
request/reply exchange. Supporting concurrent in-flight calls would require
matching replies against their correlation id instead.

Any infrastructure failure (spawn, write, EOF, unparseable line) poisons the
connection: the current call and all later calls fail with an internal error
and the worker is not respawned.
"""

from __future__ import annotations

import contextlib
import json
import logging
import subprocess
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol

from site2ts.ids import new_id
from site2ts.rpc.errors import InternalError, RpcError, WorkerUnavailableError

logger = logging.getLogger(__name__)

PROGRESS_METHOD = "progress"

ProgressSink = Callable[[str], None]


class WorkerClient(Protocol):
    """Protocol implemented by anything the stage handlers can delegate to."""

    def call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Run one worker method and return its result object."""


class WorkerConnection:
    """Pipes of one running worker process."""

    def __init__(self, process: subprocess.Popen[str]) -> None:
        self.process = process
        self.failure: str | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def exchange(
        self,
        method: str,
        params: dict[str, Any],
        on_progress: ProgressSink,
    ) -> dict[str, Any]:
        """Write one request and read until its reply; caller must hold the lock."""

        if self.failure is not None:
            raise WorkerUnavailableError(f"worker unavailable: {self.failure}")

        request = {"jsonrpc": "2.0", "method": method, "params": params, "id": new_id()}
        try:
            self._write_line(json.dumps(request, ensure_ascii=False))
        except (OSError, ValueError) as error:
            raise self._poison(f"write to worker failed: {error}") from error

        while True:
            try:
                line = self.process.stdout.readline() if self.process.stdout else ""
            except (OSError, ValueError) as error:
                raise self._poison(f"read from worker failed: {error}") from error
            if not line:
                raise self._poison("worker closed its output (EOF)")
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as error:
                raise self._poison(f"malformed worker reply: {error}") from error
            except RecursionError as error:
                raise self._poison("malformed worker reply: nesting too deep") from error
            if not isinstance(message, dict):
                raise self._poison("malformed worker reply: expected a JSON object")

            if message.get("method") == PROGRESS_METHOD:
                on_progress(line.rstrip("\r\n"))
                continue
            return _translate_reply(message)

    def terminate(self) -> None:
        _terminate_process(self.process)

    def _write_line(self, line: str) -> None:
        if self.process.stdin is None:
            raise OSError("worker stdin is not piped")
        self.process.stdin.write(line + "\n")
        self.process.stdin.flush()

    def _poison(self, reason: str) -> InternalError:
        self.failure = reason
        logger.error("Worker connection pid=%s failed: %s", self.process.pid, reason)
        return InternalError(reason)


class WorkerSupervisor:
    """Owns the lifecycle of exactly one worker process.

    The process is spawned lazily on the first :meth:`get` and reused for
    the supervisor's lifetime. A failed spawn is remembered and reported on
    every later call instead of being retried.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        on_progress: ProgressSink | None = None,
    ) -> None:
        self.command = tuple(command)
        self.cwd = cwd
        self.env = env
        self._on_progress = on_progress or (lambda _line: None)
        self._spawn_lock = threading.Lock()
        self._call_lock = threading.Lock()
        self._connection: WorkerConnection | None = None
        self._spawn_failure: str | None = None

    def set_progress_sink(self, on_progress: ProgressSink) -> None:
        self._on_progress = on_progress

    def get(self) -> WorkerConnection:
        """Return the worker connection, spawning the process on first use."""

        with self._spawn_lock:
            if self._connection is not None:
                return self._connection
            if self._spawn_failure is not None:
                raise WorkerUnavailableError(f"worker unavailable: {self._spawn_failure}")
            try:
                process = subprocess.Popen(  # noqa: S603
                    self.command,
                    cwd=self.cwd,
                    env=self.env,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=None,
                    text=True,
                    encoding="utf-8",
                    bufsize=1,
                )
            except (OSError, ValueError) as error:
                self._spawn_failure = f"failed to spawn worker {self.command[:1]}: {error}"
                logger.error("%s", self._spawn_failure)
                raise WorkerUnavailableError(
                    f"worker unavailable: {self._spawn_failure}",
                ) from error
            logger.info("Worker started pid=%s command=%s", process.pid, " ".join(self.command))
            self._connection = WorkerConnection(process)
            return self._connection

    def call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send one request to the worker and return its result object."""

        with self._call_lock:
            connection = self.get()
            logger.debug("Worker call method=%s", method)
            return connection.exchange(method, params, self._on_progress)

    def close(self) -> None:
        """Terminate the worker if it was started."""

        with self._spawn_lock:
            connection = self._connection
        if connection is not None:
            connection.terminate()
            logger.info("Worker stopped pid=%s", connection.pid)


def _translate_reply(message: dict[str, Any]) -> dict[str, Any]:
    error = message.get("error")
    if error is not None:
        if not isinstance(error, dict):
            raise InternalError(f"worker error: {error}")
        code = error.get("code")
        raise RpcError(
            code if isinstance(code, int) else -32603,
            str(error.get("message") or "worker error"),
            error.get("data"),
        )
    result = message.get("result")
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise InternalError("malformed worker reply: result must be an object")
    return result


def _terminate_process(process: subprocess.Popen[str]) -> None:
    for stream in (process.stdin, process.stdout):
        if stream is not None:
            with contextlib.suppress(OSError):
                stream.close()
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
