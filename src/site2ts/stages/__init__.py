"""Pipeline stage handlers."""

from site2ts.stages.handlers import STAGES, WORKER_METHODS, Job, StageHandlers

__all__ = [
    "STAGES",
    "WORKER_METHODS",
    "Job",
    "StageHandlers",
]
