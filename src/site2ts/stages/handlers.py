"""Stage handlers: normalize, check ordering, delegate, persist, shape.

Every handler follows the same sequence:

1. parse the raw ``params`` into a typed object with documented defaults;
2. verify the upstream manifest it depends on exists locally;
3. delegate to the worker with the stage's worker method;
4. coalesce identifiers (worker-provided when usable, else freshly minted);
5. write the stage manifest, replacing any previous content;
6. append one job-log record;
7. return the normalized result merged with the persisted identifiers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from site2ts.ids import coalesce_id, iso_ms, utc_now
from site2ts.rpc import errors
from site2ts.rpc.errors import OrderingError
from site2ts.stages.params import (
    AnalyzeParams,
    ApplyParams,
    AuditParams,
    CrawlParams,
    DiffParams,
    GenerateParams,
    GenerationRefParams,
    InitParams,
    ScaffoldParams,
)
from site2ts.store import ArtifactStore, JobLog, JobLogRecord
from site2ts.worker import WorkerClient

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = (
    "init",
    "crawl",
    "analyze",
    "scaffold",
    "generate",
    "diff",
    "audit",
    "apply",
    "assets",
    "pack",
)

WORKER_METHODS: dict[str, str] = {"init": "initRuntime"}

StageHandler = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(slots=True, frozen=True)
class Job:
    """One stage invocation."""

    id: str
    stage: str
    created_at: datetime


class StageHandlers:
    """Implements the pipeline stages on top of a worker client and the store."""

    def __init__(
        self,
        *,
        worker: WorkerClient,
        store: ArtifactStore,
        job_log: JobLog | None = None,
        pinned_versions: dict[str, str] | None = None,
    ) -> None:
        self.worker = worker
        self.store = store
        self.job_log = job_log or JobLog(store.logs_dir)
        self.pinned_versions = dict(pinned_versions or {})

    def table(self) -> dict[str, StageHandler]:
        """Method name to handler mapping used by the RPC front-end."""

        return {stage: getattr(self, stage) for stage in STAGES}

    # -- stages ---------------------------------------------------------------

    def init(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = InitParams.from_params(raw)
        self.store.ensure_skeleton()
        job, result = self._delegate("init", params.to_wire())
        pins = {
            "versions": dict(self.pinned_versions),
            "createdAt": iso_ms(job.created_at),
            "projectRoot": params.project_root,
        }
        pins_path = self.store.write(self.store.pins_path, pins)
        data: dict[str, Any] = {"pinsPath": str(pins_path)}
        warning = result.get("warning")
        if isinstance(warning, str) and warning:
            data["warning"] = warning
        level = "warn" if "warning" in data else "info"
        self._record(job, "runtime initialized", data, level=level)
        return {"ok": True, "jobId": job.id, "root": str(self.store.root_dir), **data}

    def crawl(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = CrawlParams.from_params(raw)
        job, result = self._delegate("crawl", params.to_wire())
        site_map_id = coalesce_id(result, "siteMapId")
        pages = _list(result.get("pages"))
        manifest_path = self.store.write(
            self.store.sitemap_path(site_map_id),
            {
                "siteMapId": site_map_id,
                **params.to_wire(),
                "pages": pages,
                "createdAt": iso_ms(job.created_at),
            },
        )
        self._record(
            job,
            f"crawled {len(pages)} page(s)",
            {"siteMapId": site_map_id, "startUrl": params.start_url, "pages": len(pages)},
        )
        return {
            "jobId": job.id,
            "siteMapId": site_map_id,
            "pages": pages,
            "manifestPath": str(manifest_path),
        }

    def analyze(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = AnalyzeParams.from_params(raw)
        if not self.store.sitemap_path(params.site_map_id).is_file():
            raise OrderingError(
                errors.CRAWL_REQUIRED_FOR_ANALYZE,
                stage="analyze",
                requires="crawl",
                detail=f"siteMapId {params.site_map_id} not found",
            )
        job, result = self._delegate("analyze", params.to_wire())
        analysis_id = coalesce_id(result, "analysisId")
        assets = _dict(result.get("assets"))
        analysis = {
            "analysisId": analysis_id,
            "siteMapId": params.site_map_id,
            "routes": _list(result.get("routes")),
            "forms": _list(result.get("forms")),
            "assets": {
                "images": _list(assets.get("images")),
                "fonts": _list(assets.get("fonts")),
                "styles": _list(assets.get("styles")),
            },
        }
        self.store.write(
            self.store.analysis_path,
            {**analysis, "createdAt": iso_ms(job.created_at)},
        )
        self._record(
            job,
            f"analyzed {len(analysis['routes'])} route(s)",
            {
                "analysisId": analysis_id,
                "siteMapId": params.site_map_id,
                "routes": len(analysis["routes"]),
                "forms": len(analysis["forms"]),
            },
        )
        return {"jobId": job.id, **analysis}

    def scaffold(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = ScaffoldParams.from_params(raw)
        self._require_analysis(
            params.analysis_id,
            stage="scaffold",
            code=errors.ANALYZE_REQUIRED_FOR_SCAFFOLD,
        )
        job, result = self._delegate("scaffold", params.to_wire())
        scaffold_id = coalesce_id(result, "scaffoldId")
        out_dir = result.get("outDir")
        if not isinstance(out_dir, str) or not out_dir:
            out_dir = str(self.store.root_dir / "staging")
        scaffold = {
            "scaffoldId": scaffold_id,
            "analysisId": params.analysis_id,
            "outDir": out_dir,
            "appRouter": params.app_router,
        }
        self.store.write(
            self.store.scaffold_path,
            {**scaffold, "createdAt": iso_ms(job.created_at)},
        )
        self._record(job, "scaffold created", dict(scaffold))
        return {"jobId": job.id, **scaffold}

    def generate(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = GenerateParams.from_params(raw)
        scaffold = self.store.read(self.store.scaffold_path)
        if scaffold is None or scaffold.get("scaffoldId") != params.scaffold_id:
            raise OrderingError(
                errors.SCAFFOLD_REQUIRED_FOR_GENERATE,
                stage="generate",
                requires="scaffold",
                detail=f"scaffoldId {params.scaffold_id} not found",
            )
        self._require_analysis(
            params.analysis_id,
            stage="generate",
            code=errors.ANALYZE_REQUIRED_FOR_GENERATE,
        )
        job, result = self._delegate("generate", params.to_wire())
        generation = {
            "generationId": coalesce_id(result, "generationId"),
            "analysisId": params.analysis_id,
            "scaffoldId": params.scaffold_id,
            "tailwindMode": params.tailwind_mode,
        }
        self.store.write(
            self.store.generation_path,
            {**generation, "createdAt": iso_ms(job.created_at)},
        )
        self._record(job, "code generated", dict(generation))
        return {"jobId": job.id, **generation}

    def diff(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = DiffParams.from_params(raw)
        self._require_generation(
            params.generation_id,
            stage="diff",
            code=errors.GENERATE_REQUIRED_FOR_DIFF,
        )
        job, result = self._delegate("diff", params.to_wire())
        diff_id = coalesce_id(result, "diffId")
        summary = _dict(result.get("summary"))
        shaped = {
            "diffId": diff_id,
            "generationId": params.generation_id,
            "perRoute": _list(result.get("perRoute")),
            "summary": {
                "passed": summary.get("passed", 0),
                "failed": summary.get("failed", 0),
                "avg": summary.get("avg", 0),
            },
        }
        report_path = self._write_report("diff", diff_id, job, params.to_wire(), shaped)
        self._record(
            job,
            "visual diff complete",
            {"diffId": diff_id, "reportPath": str(report_path), **shaped["summary"]},
        )
        return {"jobId": job.id, **shaped, "reportPath": str(report_path)}

    def audit(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = AuditParams.from_params(raw)
        self._require_generation(
            params.generation_id,
            stage="audit",
            code=errors.GENERATE_REQUIRED_FOR_AUDIT,
        )
        job, result = self._delegate("audit", params.to_wire())
        audit_id = coalesce_id(result, "auditId")
        shaped = {
            "auditId": audit_id,
            "generationId": params.generation_id,
            "tsc": _dict(result.get("tsc")),
            "eslint": _dict(result.get("eslint")),
        }
        report_path = self._write_report("audit", audit_id, job, params.to_wire(), shaped)
        self._record(
            job,
            "audit complete",
            {
                "auditId": audit_id,
                "reportPath": str(report_path),
                "tscErrors": shaped["tsc"].get("errors", 0),
                "eslintErrors": shaped["eslint"].get("errors", 0),
            },
        )
        return {"jobId": job.id, **shaped, "reportPath": str(report_path)}

    def apply(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = ApplyParams.from_params(raw)
        self._require_generation(
            params.generation_id,
            stage="apply",
            code=errors.GENERATE_REQUIRED_FOR_APPLY,
        )
        job, result = self._delegate("apply", params.to_wire())
        deleted = _dict(result.get("deletedFiles"))
        shaped = {
            "generationId": params.generation_id,
            "applied": bool(result.get("applied", not params.dry_run)),
            "dryRun": params.dry_run,
            "target": params.target,
            "changedFiles": _list(result.get("changedFiles")),
            "deletedFiles": {
                "removed": _list(deleted.get("removed")),
                "skipped": _list(deleted.get("skipped")),
            },
        }
        report_path = self._write_report("apply", job.id, job, params.to_wire(), shaped)
        self._record(
            job,
            "changes applied" if shaped["applied"] else "apply planned (dry run)",
            {
                "generationId": params.generation_id,
                "reportPath": str(report_path),
                "changedFiles": len(shaped["changedFiles"]),
            },
        )
        return {"jobId": job.id, **shaped, "reportPath": str(report_path)}

    def assets(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = GenerationRefParams.from_params(raw)
        self._require_generation(
            params.generation_id,
            stage="assets",
            code=errors.GENERATE_REQUIRED_FOR_ASSETS,
        )
        job, result = self._delegate("assets", params.to_wire())
        shaped = {
            "generationId": params.generation_id,
            "manifestPath": _str_or_none(result.get("manifestPath")),
        }
        report_path = self._write_report("assets", job.id, job, params.to_wire(), shaped)
        self._record(job, "asset manifest written", {**shaped, "reportPath": str(report_path)})
        return {"jobId": job.id, **shaped, "reportPath": str(report_path)}

    def pack(self, raw: dict[str, Any]) -> dict[str, Any]:
        params = GenerationRefParams.from_params(raw)
        self._require_generation(
            params.generation_id,
            stage="pack",
            code=errors.GENERATE_REQUIRED_FOR_PACK,
        )
        job, result = self._delegate("pack", params.to_wire())
        shaped = {
            "generationId": params.generation_id,
            "tarPath": _str_or_none(result.get("tarPath")),
        }
        report_path = self._write_report("pack", job.id, job, params.to_wire(), shaped)
        self._record(job, "export packed", {**shaped, "reportPath": str(report_path)})
        return {"jobId": job.id, **shaped, "reportPath": str(report_path)}

    # -- helpers --------------------------------------------------------------

    def _delegate(self, stage: str, wire: dict[str, Any]) -> tuple[Job, dict[str, Any]]:
        started_at = utc_now()
        result = self.worker.call(WORKER_METHODS.get(stage, stage), wire)
        job = Job(id=coalesce_id(result, "jobId"), stage=stage, created_at=started_at)
        logger.info("Stage %s finished job_id=%s", stage, job.id)
        return job, result

    def _record(
        self,
        job: Job,
        msg: str,
        data: dict[str, Any],
        *,
        level: str = "info",
    ) -> None:
        self.job_log.append(
            JobLogRecord(jobId=job.id, phase=job.stage, msg=msg, level=level, data=data),
        )

    def _write_report(
        self,
        stage: str,
        report_id: str,
        job: Job,
        wire: dict[str, Any],
        shaped: dict[str, Any],
    ) -> Path:
        return self.store.write(
            self.store.report_path(stage, report_id),
            {
                "jobId": job.id,
                "params": wire,
                **shaped,
                "createdAt": iso_ms(job.created_at),
            },
        )

    def _require_analysis(self, analysis_id: str, *, stage: str, code: int) -> None:
        analysis = self.store.read(self.store.analysis_path)
        if analysis is None or analysis.get("analysisId") != analysis_id:
            raise OrderingError(
                code,
                stage=stage,
                requires="analyze",
                detail=f"analysisId {analysis_id} not found",
            )

    def _require_generation(self, generation_id: str, *, stage: str, code: int) -> None:
        generation = self.store.read(self.store.generation_path)
        if generation is None or generation.get("generationId") != generation_id:
            raise OrderingError(
                code,
                stage=stage,
                requires="generate",
                detail=f"generationId {generation_id} not found",
            )


def _list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def _dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None
