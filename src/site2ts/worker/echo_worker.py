"""Local deterministic worker for supervisor and server integration tests.

Speaks the worker protocol on stdin/stdout without touching the network: each
method emits ``progress`` notifications and returns a result shaped like the
real worker's, with freshly minted identifiers.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TextIO
from urllib.parse import urlparse

from site2ts.ids import new_id

Handler = Callable[[dict[str, Any]], dict[str, Any]]


class EchoWorkerError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _sha1(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()  # noqa: S324


def _init_runtime(params: dict[str, Any]) -> dict[str, Any]:
    return {"ok": True, "jobId": new_id()}


def _crawl(params: dict[str, Any]) -> dict[str, Any]:
    start_url = str(params.get("startUrl", ""))
    pages = [{"url": start_url, "hash": _sha1(start_url)}] if start_url else []
    return {"jobId": new_id(), "siteMapId": new_id(), "pages": pages}


def _analyze(params: dict[str, Any]) -> dict[str, Any]:
    sitemap_path = Path(".site2ts") / "cache" / "sitemaps" / f"{params.get('siteMapId')}.json"
    pages: list[dict[str, Any]] = []
    if sitemap_path.is_file():
        pages = json.loads(sitemap_path.read_text("utf-8")).get("pages") or []
    routes = []
    for page in pages:
        url = str(page.get("url", ""))
        routes.append({"route": urlparse(url).path or "/", "sourceUrl": url, "dynamic": False})
    return {
        "jobId": new_id(),
        "analysisId": new_id(),
        "routes": routes,
        "forms": [],
        "assets": {"images": [], "fonts": [], "styles": []},
    }


def _scaffold(params: dict[str, Any]) -> dict[str, Any]:
    return {"jobId": new_id(), "scaffoldId": new_id(), "outDir": ".site2ts/staging"}


def _generate(params: dict[str, Any]) -> dict[str, Any]:
    return {"jobId": new_id(), "generationId": new_id()}


def _diff(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "jobId": new_id(),
        "diffId": new_id(),
        "perRoute": [],
        "summary": {"passed": 0, "failed": 0, "avg": 0},
    }


def _audit(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "jobId": new_id(),
        "auditId": new_id(),
        "tsc": {"errors": 0, "reportPath": ""},
        "eslint": {"errors": 0, "warnings": 0, "reportPath": ""},
    }


def _apply(params: dict[str, Any]) -> dict[str, Any]:
    dry_run = bool(params.get("dryRun", False))
    return {
        "jobId": new_id(),
        "applied": not dry_run,
        "changedFiles": [],
        "deletedFiles": {"removed": [], "skipped": []},
    }


def _assets(params: dict[str, Any]) -> dict[str, Any]:
    return {"jobId": new_id(), "manifestPath": ".site2ts/reports/assets-manifest.json"}


def _pack(params: dict[str, Any]) -> dict[str, Any]:
    return {"jobId": new_id(), "tarPath": ".site2ts/exports/site2ts-mvp.tgz"}


HANDLERS: dict[str, Handler] = {
    "ping": lambda _params: {"ok": True, "msg": "site2ts-worker ready"},
    "initRuntime": _init_runtime,
    "crawl": _crawl,
    "analyze": _analyze,
    "scaffold": _scaffold,
    "generate": _generate,
    "diff": _diff,
    "audit": _audit,
    "apply": _apply,
    "assets": _assets,
    "pack": _pack,
}

ID_FIELDS = ("jobId", "siteMapId", "analysisId", "scaffoldId", "generationId", "diffId", "auditId")


def _emit(out: TextIO, payload: dict[str, Any]) -> None:
    out.write(json.dumps(payload) + "\n")
    out.flush()


def _progress(out: TextIO, tool: str, phase: str) -> None:
    _emit(out, {"jsonrpc": "2.0", "method": "progress", "params": {"tool": tool, "phase": phase}})


def serve(  # noqa: PLR0913
    stdin: TextIO,
    stdout: TextIO,
    *,
    omit_ids: bool = False,
    fail_method: str | None = None,
    fail_code: int = -32099,
    garbage_method: str | None = None,
    exit_method: str | None = None,
) -> int:
    """Answer requests until stdin closes."""

    for raw in stdin:
        line = raw.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError as error:
            _emit(stdout, {"jsonrpc": "2.0", "error": {"code": -32700, "message": str(error)}})
            continue
        method = request.get("method", "")
        params = request.get("params") or {}
        request_id = request.get("id")

        if method == exit_method:
            return 0
        if method == garbage_method:
            stdout.write("this is not json\n")
            stdout.flush()
            continue

        _progress(stdout, method, "start")
        try:
            if method == fail_method:
                raise EchoWorkerError(fail_code, f"{method} failed", {"step": method})
            handler = HANDLERS.get(method)
            if handler is None:
                raise EchoWorkerError(-32601, "method not found")
            result = handler(params)
        except EchoWorkerError as error:
            payload: dict[str, Any] = {"code": error.code, "message": error.message}
            if error.data is not None:
                payload["data"] = error.data
            _emit(stdout, {"jsonrpc": "2.0", "error": payload, "id": request_id})
            continue
        _progress(stdout, method, "complete")

        if omit_ids:
            result = {key: value for key, value in result.items() if key not in ID_FIELDS}
        _emit(stdout, {"jsonrpc": "2.0", "result": result, "id": request_id})
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the echo worker on stdio."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--omit-ids", action="store_true", help="Drop identifier fields.")
    parser.add_argument("--fail-method", default=None, help="Answer this method with an error.")
    parser.add_argument("--fail-code", type=int, default=-32099)
    parser.add_argument("--garbage-method", default=None, help="Answer this method with non-JSON.")
    parser.add_argument("--exit-method", default=None, help="Exit without replying to this method.")
    args = parser.parse_args(argv)

    return serve(
        sys.stdin,
        sys.stdout,
        omit_ids=args.omit_ids,
        fail_method=args.fail_method,
        fail_code=args.fail_code,
        garbage_method=args.garbage_method,
        exit_method=args.exit_method,
    )


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
