"""JSON-RPC error taxonomy shared by the front-end, handlers and supervisor."""

from __future__ import annotations

from typing import Any

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Ordering violations, one code per missing upstream artifact.
CRAWL_REQUIRED_FOR_ANALYZE = -32001
ANALYZE_REQUIRED_FOR_SCAFFOLD = -32002
SCAFFOLD_REQUIRED_FOR_GENERATE = -32003
ANALYZE_REQUIRED_FOR_GENERATE = -32004
GENERATE_REQUIRED_FOR_DIFF = -32005
GENERATE_REQUIRED_FOR_AUDIT = -32006
GENERATE_REQUIRED_FOR_APPLY = -32010
GENERATE_REQUIRED_FOR_ASSETS = -32011
GENERATE_REQUIRED_FOR_PACK = -32012


class RpcError(Exception):
    """Error carrying a JSON-RPC code, message and optional data payload."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


class ParseError(RpcError):
    def __init__(self, detail: str) -> None:
        super().__init__(PARSE_ERROR, f"parse error: {detail}")


class InvalidRequest(RpcError):
    def __init__(self, detail: str) -> None:
        super().__init__(INVALID_REQUEST, f"invalid request: {detail}")


class MethodNotFound(RpcError):
    def __init__(self, method: str) -> None:
        super().__init__(METHOD_NOT_FOUND, f"method not found: {method}")


class InvalidParams(RpcError):
    """Parameter failure; ``field`` names the offending parameter."""

    def __init__(self, field: str, problem: str) -> None:
        super().__init__(INVALID_PARAMS, f"invalid params: `{field}` {problem}", {"field": field})
        self.field = field


class InternalError(RpcError):
    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(INTERNAL_ERROR, message, data)


class WorkerUnavailableError(InternalError):
    """The worker could not be spawned or its connection was poisoned."""


class OrderingError(RpcError):
    """A stage ran before the upstream stage that produces its input."""

    def __init__(self, code: int, *, stage: str, requires: str, detail: str) -> None:
        super().__init__(
            code,
            f"{detail}; run {requires} before {stage}",
            {"stage": stage, "requires": requires},
        )
        self.stage = stage
        self.requires = requires
