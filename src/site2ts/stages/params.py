"""Typed stage parameters with documented defaults.

Each ``from_params`` validates the raw JSON-RPC ``params`` object and raises
:class:`InvalidParams` naming the first missing or mistyped field. ``to_wire``
renders the normalized object sent to the worker and stored in manifests.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from site2ts.ids import is_usable_id
from site2ts.rpc.errors import InvalidParams

_MISSING = object()


def _get(raw: dict[str, Any], name: str, *aliases: str) -> Any:
    for key in (name, *aliases):
        if key in raw and raw[key] is not None:
            return raw[key]
    return _MISSING


def _require_id(raw: dict[str, Any], name: str) -> str:
    value = _get(raw, name)
    if value is _MISSING:
        raise InvalidParams(name, "is required")
    if not isinstance(value, str):
        raise InvalidParams(name, "must be a string")
    if not is_usable_id(value):
        raise InvalidParams(name, "must be a non-empty identifier without path separators")
    return value


def _opt_str(raw: dict[str, Any], name: str, default: str) -> str:
    value = _get(raw, name)
    if value is _MISSING:
        return default
    if not isinstance(value, str):
        raise InvalidParams(name, "must be a string")
    return value


def _opt_bool(raw: dict[str, Any], name: str, default: bool) -> bool:
    value = _get(raw, name)
    if value is _MISSING:
        return default
    if not isinstance(value, bool):
        raise InvalidParams(name, "must be a boolean")
    return value


def _opt_int(raw: dict[str, Any], name: str, default: int, *, minimum: int = 0) -> int:
    value = _get(raw, name)
    if value is _MISSING:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParams(name, "must be an integer")
    if value < minimum:
        raise InvalidParams(name, f"must be >= {minimum}")
    return value


def _opt_number(
    raw: dict[str, Any],
    name: str,
    default: float,
    *aliases: str,
    label: str | None = None,
) -> float:
    value = _get(raw, name, *aliases)
    if value is _MISSING:
        return default
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise InvalidParams(label or name, "must be a number")
    # JSON input may carry NaN, Infinity or overflowing literals such as 1e400.
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidParams(label or name, "must be a finite number")
    return value


def _opt_str_list(raw: dict[str, Any], name: str) -> list[str]:
    value = _get(raw, name)
    if value is _MISSING:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidParams(name, "must be an array of strings")
    return list(value)


@dataclass(slots=True)
class InitParams:
    project_root: str = "."

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> InitParams:
        return cls(project_root=_opt_str(raw, "projectRoot", "."))

    def to_wire(self) -> dict[str, Any]:
        return {"projectRoot": self.project_root}


@dataclass(slots=True)
class CrawlParams:  # noqa: PLR0902
    start_url: str
    same_origin: bool = True
    max_pages: int = 50
    max_depth: int = 5
    allow: list[str] = field(default_factory=list)
    deny: list[str] = field(default_factory=list)
    concurrency: int = 4
    delay_ms: int = 0
    use_sitemap: bool = True
    obey_robots: bool = True

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> CrawlParams:
        start_url = _get(raw, "startUrl")
        if start_url is _MISSING:
            raise InvalidParams("startUrl", "is required")
        if not isinstance(start_url, str) or not start_url.strip():
            raise InvalidParams("startUrl", "must be a non-empty string")
        return cls(
            start_url=start_url,
            same_origin=_opt_bool(raw, "sameOrigin", True),
            max_pages=_opt_int(raw, "maxPages", 50, minimum=1),
            max_depth=_opt_int(raw, "maxDepth", 5),
            allow=_opt_str_list(raw, "allow"),
            deny=_opt_str_list(raw, "deny"),
            concurrency=_opt_int(raw, "concurrency", 4, minimum=1),
            delay_ms=_opt_int(raw, "delayMs", 0),
            use_sitemap=_opt_bool(raw, "useSitemap", True),
            obey_robots=_opt_bool(raw, "obeyRobots", True),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "startUrl": self.start_url,
            "sameOrigin": self.same_origin,
            "maxPages": self.max_pages,
            "maxDepth": self.max_depth,
            "allow": list(self.allow),
            "deny": list(self.deny),
            "concurrency": self.concurrency,
            "delayMs": self.delay_ms,
            "useSitemap": self.use_sitemap,
            "obeyRobots": self.obey_robots,
        }


@dataclass(slots=True)
class AnalyzeParams:
    site_map_id: str

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> AnalyzeParams:
        return cls(site_map_id=_require_id(raw, "siteMapId"))

    def to_wire(self) -> dict[str, Any]:
        return {"siteMapId": self.site_map_id}


@dataclass(slots=True)
class ScaffoldParams:
    analysis_id: str
    app_router: bool = True

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> ScaffoldParams:
        return cls(
            analysis_id=_require_id(raw, "analysisId"),
            app_router=_opt_bool(raw, "appRouter", True),
        )

    def to_wire(self) -> dict[str, Any]:
        return {"analysisId": self.analysis_id, "appRouter": self.app_router}


@dataclass(slots=True)
class GenerateParams:
    analysis_id: str
    scaffold_id: str
    tailwind_mode: str = "full"

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> GenerateParams:
        return cls(
            analysis_id=_require_id(raw, "analysisId"),
            scaffold_id=_require_id(raw, "scaffoldId"),
            tailwind_mode=_opt_str(raw, "tailwindMode", "").strip() or "full",
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "analysisId": self.analysis_id,
            "scaffoldId": self.scaffold_id,
            "tailwindMode": self.tailwind_mode,
        }


@dataclass(slots=True)
class Viewport:
    width: int = 1280
    height: int = 800
    device_scale: float = 1

    @classmethod
    def from_params(cls, raw: Any) -> Viewport:
        if raw is _MISSING:
            return cls()
        if not isinstance(raw, dict):
            raise InvalidParams("viewport", "must be an object")
        width = _opt_number(raw, "width", 1280, "w", label="viewport.width")
        height = _opt_number(raw, "height", 800, "h", label="viewport.height")
        if width != int(width) or width <= 0:
            raise InvalidParams("viewport.width", "must be a positive integer")
        if height != int(height) or height <= 0:
            raise InvalidParams("viewport.height", "must be a positive integer")
        device_scale = _opt_number(raw, "deviceScale", 1, label="viewport.deviceScale")
        if device_scale <= 0:
            raise InvalidParams("viewport.deviceScale", "must be > 0")
        return cls(width=int(width), height=int(height), device_scale=device_scale)

    def to_wire(self) -> dict[str, Any]:
        return {"width": self.width, "height": self.height, "deviceScale": self.device_scale}


@dataclass(slots=True)
class DiffParams:
    generation_id: str
    baselines: str = "recrawl"
    viewport: Viewport = field(default_factory=Viewport)
    threshold: float = 0.01

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> DiffParams:
        baselines = _opt_str(raw, "baselines", "recrawl")
        if baselines not in {"recrawl", "cached"}:
            raise InvalidParams("baselines", "must be 'recrawl' or 'cached'")
        threshold = _opt_number(raw, "threshold", 0.01)
        if not 0 <= threshold <= 1:
            raise InvalidParams("threshold", "must be between 0 and 1")
        return cls(
            generation_id=_require_id(raw, "generationId"),
            baselines=baselines,
            viewport=Viewport.from_params(_get(raw, "viewport")),
            threshold=threshold,
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "generationId": self.generation_id,
            "baselines": self.baselines,
            "viewport": self.viewport.to_wire(),
            "threshold": self.threshold,
        }


@dataclass(slots=True)
class AuditParams:
    generation_id: str
    ts_strict: bool = True
    eslint_config: str = "recommended"

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> AuditParams:
        return cls(
            generation_id=_require_id(raw, "generationId"),
            ts_strict=_opt_bool(raw, "tsStrict", True),
            eslint_config=_opt_str(raw, "eslintConfig", "recommended"),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "generationId": self.generation_id,
            "tsStrict": self.ts_strict,
            "eslintConfig": self.eslint_config,
        }


@dataclass(slots=True)
class ApplyParams:
    generation_id: str
    target: str = "./"
    dry_run: bool = False

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> ApplyParams:
        return cls(
            generation_id=_require_id(raw, "generationId"),
            target=_opt_str(raw, "target", "./"),
            dry_run=_opt_bool(raw, "dryRun", False),
        )

    def to_wire(self) -> dict[str, Any]:
        return {"generationId": self.generation_id, "target": self.target, "dryRun": self.dry_run}


@dataclass(slots=True)
class GenerationRefParams:
    """Parameters of stages that only reference a generation (assets, pack)."""

    generation_id: str

    @classmethod
    def from_params(cls, raw: dict[str, Any]) -> GenerationRefParams:
        return cls(generation_id=_require_id(raw, "generationId"))

    def to_wire(self) -> dict[str, Any]:
        return {"generationId": self.generation_id}
