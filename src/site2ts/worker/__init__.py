"""Worker process supervision."""

from site2ts.worker.supervisor import (
    PROGRESS_METHOD,
    WorkerClient,
    WorkerConnection,
    WorkerSupervisor,
)

__all__ = [
    "PROGRESS_METHOD",
    "WorkerClient",
    "WorkerConnection",
    "WorkerSupervisor",
]
