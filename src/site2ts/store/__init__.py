"""Durable manifests and job logs."""

from site2ts.store.artifacts import ArtifactStore, load_json, write_json
from site2ts.store.joblog import JobLog, JobLogRecord

__all__ = [
    "ArtifactStore",
    "JobLog",
    "JobLogRecord",
    "load_json",
    "write_json",
]
