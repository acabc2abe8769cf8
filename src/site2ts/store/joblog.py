"""Append-only per-job NDJSON log."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from site2ts.ids import iso_ms


@dataclass(slots=True)
class JobLogRecord:
    """One line of ``logs/<jobId>.ndjson``."""

    jobId: str  # noqa: N815
    phase: str
    msg: str
    level: str = "info"
    data: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=iso_ms)


class JobLog:
    """Appends structured records to ``<logs_dir>/<jobId>.ndjson``."""

    def __init__(self, logs_dir: Path) -> None:
        self.logs_dir = logs_dir

    def path_for(self, job_id: str) -> Path:
        return self.logs_dir / f"{job_id}.ndjson"

    def append(self, record: JobLogRecord) -> Path:
        path = self.path_for(record.jobId)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = asdict(record)
        line = json.dumps(
            {key: payload[key] for key in ("ts", "level", "jobId", "phase", "msg", "data")},
            ensure_ascii=False,
        )
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return path

    def read(self, job_id: str) -> list[dict[str, Any]]:
        path = self.path_for(job_id)
        if not path.is_file():
            return []
        return [json.loads(line) for line in path.read_text("utf-8").splitlines() if line.strip()]
