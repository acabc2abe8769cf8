"""Line-delimited JSON-RPC front-end.

Reads one request per line, dispatches it to a stage handler and writes
exactly one response line per request. Requests are handled strictly one at
a time; the loop ends only when its input is exhausted or unreadable.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TextIO

from site2ts.rpc.errors import (
    InternalError,
    InvalidParams,
    InvalidRequest,
    MethodNotFound,
    ParseError,
    RpcError,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], dict[str, Any]]

_ABSENT = object()


class RpcServer:
    """Dispatches JSON-RPC requests to a fixed method table."""

    def __init__(self, handlers: Mapping[str, Handler], output: TextIO) -> None:
        self.handlers = dict(handlers)
        self.output = output
        self._write_lock = threading.Lock()

    def serve(self, lines: Iterable[str | bytes]) -> int:
        """Process requests until input ends; return the number handled."""

        handled = 0
        iterator = iter(lines)
        while True:
            try:
                line = next(iterator)
            except StopIteration:
                break
            except (OSError, UnicodeDecodeError) as error:
                logger.error("Stopping: failed to read request input: %s", error)
                break
            response = self.handle_line(line)
            if response is None:
                continue
            self.write_message(response)
            handled += 1
        logger.info("Request loop finished after %d request(s)", handled)
        return handled

    def handle_line(self, line: str | bytes) -> dict[str, Any] | None:
        """Turn one input line into one response object; blank lines yield ``None``.

        Raw byte lines are decoded as UTF-8 here so an undecodable line is
        answered with a parse error instead of ending the loop.
        """

        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError as error:
                return _error_response(ParseError(f"invalid UTF-8: {error}"), None)
        if not line.strip():
            return None
        try:
            request = json.loads(line)
        except json.JSONDecodeError as error:
            return _error_response(ParseError(str(error)), None)
        except RecursionError:
            return _error_response(ParseError("nesting too deep"), None)
        return self.dispatch(request)

    def dispatch(self, request: Any) -> dict[str, Any]:
        if not isinstance(request, dict):
            return _error_response(InvalidRequest("expected a JSON object"), None)
        request_id = request.get("id", _ABSENT)
        echo_id = None if request_id is _ABSENT else request_id

        method = request.get("method")
        if not isinstance(method, str):
            return _error_response(InvalidRequest("`method` must be a string"), echo_id)
        handler = self.handlers.get(method)
        if handler is None:
            return _error_response(MethodNotFound(method), echo_id)

        params = request.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return _error_response(InvalidParams("params", "must be an object"), echo_id)

        try:
            result = handler(params)
        except RpcError as error:
            logger.warning("Request %s failed: code=%s %s", method, error.code, error.message)
            return _error_response(error, echo_id)
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected failure handling %s", method)
            return _error_response(InternalError(f"internal error: {error}"), echo_id)
        return {"jsonrpc": "2.0", "result": result, "id": echo_id}

    def write_message(self, message: dict[str, Any]) -> None:
        self.write_raw(json.dumps(message, ensure_ascii=False))

    def write_raw(self, line: str) -> None:
        """Write one already-serialized line and flush it immediately."""

        with self._write_lock:
            self.output.write(line + "\n")
            self.output.flush()


def _error_response(error: RpcError, request_id: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "error": error.to_payload(), "id": request_id}
