"""Manifest persistence under the ``.site2ts`` working directory.

Layout::

    pins.json
    staging/meta/{analysis,scaffold,generation}.json
    cache/sitemaps/<siteMapId>.json
    cache/pw/                  (worker-owned)
    reports/<stage>/<id>.json
    logs/<jobId>.ndjson
    exports/
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from site2ts.ids import is_usable_id

SKELETON_DIRS: tuple[str, ...] = (
    "staging",
    "staging/meta",
    "cache",
    "cache/sitemaps",
    "cache/pw",
    "reports",
    "logs",
    "exports",
)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload, replacing any previous content."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


class ArtifactStore:
    """Resolves id-derived manifest paths and reads/writes them."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def ensure_skeleton(self) -> list[Path]:
        created: list[Path] = []
        for relative in SKELETON_DIRS:
            path = self.root_dir / relative
            path.mkdir(parents=True, exist_ok=True)
            created.append(path)
        return created

    @property
    def pins_path(self) -> Path:
        return self.root_dir / "pins.json"

    @property
    def meta_dir(self) -> Path:
        return self.root_dir / "staging" / "meta"

    @property
    def analysis_path(self) -> Path:
        return self.meta_dir / "analysis.json"

    @property
    def scaffold_path(self) -> Path:
        return self.meta_dir / "scaffold.json"

    @property
    def generation_path(self) -> Path:
        return self.meta_dir / "generation.json"

    @property
    def logs_dir(self) -> Path:
        return self.root_dir / "logs"

    def sitemap_path(self, site_map_id: str) -> Path:
        return self.root_dir / "cache" / "sitemaps" / f"{_safe_id(site_map_id)}.json"

    def report_path(self, stage: str, report_id: str) -> Path:
        return self.root_dir / "reports" / stage / f"{_safe_id(report_id)}.json"

    def write(self, path: Path, payload: dict[str, Any]) -> Path:
        write_json(path, payload)
        return path

    def read(self, path: Path) -> dict[str, Any] | None:
        """Load a manifest, or ``None`` when it has not been written yet."""

        if not path.is_file():
            return None
        return load_json(path)


def _safe_id(value: str) -> str:
    if not is_usable_id(value):
        raise ValueError(f"Invalid artifact identifier: {value!r}")
    return value
