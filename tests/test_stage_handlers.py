from __future__ import annotations

import json

import allure
import pytest

from site2ts.rpc import errors
from site2ts.rpc.errors import InvalidParams, OrderingError
from site2ts.stages import STAGES, WORKER_METHODS

pytestmark = [
    allure.epic("Control Plane"),
    allure.feature("Stage Handlers"),
]


def _through_generate(handlers) -> dict[str, str]:
    site_map_id = handlers.crawl({"startUrl": "https://example.com"})["siteMapId"]
    analysis_id = handlers.analyze({"siteMapId": site_map_id})["analysisId"]
    scaffold_id = handlers.scaffold({"analysisId": analysis_id})["scaffoldId"]
    generation_id = handlers.generate({"analysisId": analysis_id, "scaffoldId": scaffold_id})[
        "generationId"
    ]
    return {
        "siteMapId": site_map_id,
        "analysisId": analysis_id,
        "scaffoldId": scaffold_id,
        "generationId": generation_id,
    }


def test_table_covers_every_stage(handlers) -> None:
    assert tuple(handlers.table()) == STAGES
    assert WORKER_METHODS == {"init": "initRuntime"}


def test_init_creates_skeleton_and_pins(handlers, fake_worker, state_dir) -> None:
    result = handlers.init({})

    assert result["ok"] is True
    assert fake_worker.methods() == ["initRuntime"]
    pins = json.loads((state_dir / "pins.json").read_text("utf-8"))
    assert pins["versions"] == {"next": "14.2.5", "typescript": "5.5.4"}
    assert pins["createdAt"].endswith("Z")
    assert (state_dir / "staging" / "meta").is_dir()


def test_init_replaces_pins_on_rerun(handlers, state_dir) -> None:
    handlers.init({"projectRoot": "first"})
    handlers.init({"projectRoot": "second"})

    pins = json.loads((state_dir / "pins.json").read_text("utf-8"))
    assert pins["projectRoot"] == "second"


def test_init_keeps_worker_warning(handlers, fake_worker) -> None:
    fake_worker.overrides["initRuntime"] = {"ok": True, "warning": "playwright missing"}

    result = handlers.init({})

    assert result["warning"] == "playwright missing"
    (record,) = handlers.job_log.read(result["jobId"])
    assert record["level"] == "warn"


def test_crawl_forwards_normalized_defaults(handlers, fake_worker) -> None:
    handlers.crawl({"startUrl": "https://example.com", "deny": ["/admin/*"]})

    ((method, params),) = fake_worker.calls
    assert method == "crawl"
    assert params == {
        "startUrl": "https://example.com",
        "sameOrigin": True,
        "maxPages": 50,
        "maxDepth": 5,
        "allow": [],
        "deny": ["/admin/*"],
        "concurrency": 4,
        "delayMs": 0,
        "useSitemap": True,
        "obeyRobots": True,
    }


def test_missing_worker_ids_are_minted_locally(handlers, fake_worker, store) -> None:
    fake_worker.omit_ids = True

    result = handlers.crawl({"startUrl": "https://example.com"})

    assert len(result["jobId"]) == 26
    assert len(result["siteMapId"]) == 26
    assert store.sitemap_path(result["siteMapId"]).is_file()
    assert handlers.job_log.path_for(result["jobId"]).is_file()


def test_worker_ids_are_used_when_present(handlers, fake_worker, store) -> None:
    fake_worker.overrides["crawl"] = {"jobId": "job-1", "siteMapId": "map-1", "pages": []}

    result = handlers.crawl({"startUrl": "https://example.com"})

    assert result["jobId"] == "job-1"
    assert result["siteMapId"] == "map-1"
    assert store.sitemap_path("map-1").is_file()


def test_unsafe_worker_id_is_replaced(handlers, fake_worker) -> None:
    fake_worker.overrides["crawl"] = {"siteMapId": "../../escape", "pages": []}

    result = handlers.crawl({"startUrl": "https://example.com"})

    assert result["siteMapId"] != "../../escape"
    assert len(result["siteMapId"]) == 26


def test_same_id_rewrite_replaces_manifest(handlers, fake_worker, store) -> None:
    fake_worker.overrides["crawl"] = {"siteMapId": "map-1", "pages": [{"url": "a", "hash": "1"}]}
    handlers.crawl({"startUrl": "https://example.com"})
    fake_worker.overrides["crawl"] = {"siteMapId": "map-1", "pages": []}
    handlers.crawl({"startUrl": "https://example.org", "maxPages": 7})

    manifest = store.read(store.sitemap_path("map-1"))
    assert manifest["startUrl"] == "https://example.org"
    assert manifest["maxPages"] == 7
    assert manifest["pages"] == []


def test_analyze_persists_analysis_manifest(handlers, fake_worker, store) -> None:
    site_map_id = handlers.crawl({"startUrl": "https://example.com"})["siteMapId"]
    fake_worker.overrides["analyze"] = {
        "analysisId": "an-1",
        "routes": [{"route": "/", "sourceUrl": "https://example.com", "dynamic": False}],
        "forms": [{"route": "/", "method": "POST", "fields": ["q"]}],
        "assets": {"images": ["https://example.com/a.png"]},
    }

    result = handlers.analyze({"siteMapId": site_map_id})

    analysis = store.read(store.analysis_path)
    assert analysis["analysisId"] == "an-1"
    assert analysis["siteMapId"] == site_map_id
    assert analysis["assets"] == {
        "images": ["https://example.com/a.png"],
        "fonts": [],
        "styles": [],
    }
    assert result["routes"] == analysis["routes"]


def test_scaffold_before_analyze_is_ordering_error(handlers, fake_worker) -> None:
    with pytest.raises(OrderingError) as caught:
        handlers.scaffold({"analysisId": "missing"})

    assert caught.value.code == errors.ANALYZE_REQUIRED_FOR_SCAFFOLD
    assert "analyze" in caught.value.message
    assert fake_worker.calls == []


def test_scaffold_defaults_app_router(handlers, fake_worker, store) -> None:
    site_map_id = handlers.crawl({"startUrl": "https://example.com"})["siteMapId"]
    analysis_id = handlers.analyze({"siteMapId": site_map_id})["analysisId"]

    result = handlers.scaffold({"analysisId": analysis_id})

    assert result["appRouter"] is True
    assert fake_worker.calls[-1] == ("scaffold", {"analysisId": analysis_id, "appRouter": True})
    assert store.read(store.scaffold_path)["scaffoldId"] == result["scaffoldId"]


def test_generate_defaults_empty_tailwind_mode_to_full(handlers, fake_worker, store) -> None:
    site_map_id = handlers.crawl({"startUrl": "https://example.com"})["siteMapId"]
    analysis_id = handlers.analyze({"siteMapId": site_map_id})["analysisId"]
    scaffold_id = handlers.scaffold({"analysisId": analysis_id})["scaffoldId"]

    result = handlers.generate(
        {"analysisId": analysis_id, "scaffoldId": scaffold_id, "tailwindMode": ""},
    )

    assert fake_worker.calls[-1][1]["tailwindMode"] == "full"
    generation = store.read(store.generation_path)
    assert generation["generationId"] == result["generationId"]
    assert generation["analysisId"] == analysis_id
    assert generation["scaffoldId"] == scaffold_id


def test_generate_with_stale_analysis_id_is_ordering_error(handlers) -> None:
    ids = _through_generate(handlers)

    with pytest.raises(OrderingError) as caught:
        handlers.generate({"analysisId": "other", "scaffoldId": ids["scaffoldId"]})

    assert caught.value.code == errors.ANALYZE_REQUIRED_FOR_GENERATE


@pytest.mark.parametrize(
    ("stage", "code"),
    [
        ("diff", errors.GENERATE_REQUIRED_FOR_DIFF),
        ("audit", errors.GENERATE_REQUIRED_FOR_AUDIT),
        ("apply", errors.GENERATE_REQUIRED_FOR_APPLY),
        ("assets", errors.GENERATE_REQUIRED_FOR_ASSETS),
        ("pack", errors.GENERATE_REQUIRED_FOR_PACK),
    ],
)
def test_generation_consumers_require_generation(handlers, stage: str, code: int) -> None:
    with pytest.raises(OrderingError) as caught:
        getattr(handlers, stage)({"generationId": "01J0000000000000000000000G"})

    assert caught.value.code == code
    assert caught.value.data == {"stage": stage, "requires": "generate"}
    assert "run generate before" in caught.value.message


def test_diff_normalizes_viewport_and_writes_report(handlers, fake_worker, store) -> None:
    ids = _through_generate(handlers)

    result = handlers.diff({"generationId": ids["generationId"], "viewport": {"w": 390, "h": 844}})

    sent = fake_worker.calls[-1][1]
    assert sent["viewport"] == {"width": 390, "height": 844, "deviceScale": 1}
    assert sent["baselines"] == "recrawl"
    assert sent["threshold"] == 0.01
    report = store.read(store.report_path("diff", result["diffId"]))
    assert report["params"] == sent
    assert report["summary"] == {"passed": 0, "failed": 0, "avg": 0}


def test_audit_and_apply_defaults(handlers, fake_worker) -> None:
    ids = _through_generate(handlers)

    handlers.audit({"generationId": ids["generationId"]})
    audit_params = fake_worker.calls[-1][1]
    result = handlers.apply({"generationId": ids["generationId"]})
    apply_params = fake_worker.calls[-1][1]

    assert audit_params == {
        "generationId": ids["generationId"],
        "tsStrict": True,
        "eslintConfig": "recommended",
    }
    assert apply_params == {"generationId": ids["generationId"], "target": "./", "dryRun": False}
    assert result["applied"] is True


def test_assets_and_pack_record_paths(handlers, store) -> None:
    ids = _through_generate(handlers)

    assets = handlers.assets({"generationId": ids["generationId"]})
    packed = handlers.pack({"generationId": ids["generationId"]})

    assert assets["manifestPath"].endswith("assets-manifest.json")
    assert packed["tarPath"].endswith(".tgz")
    assert store.read(store.report_path("pack", packed["jobId"]))["tarPath"] == packed["tarPath"]


def test_job_log_record_shape(handlers) -> None:
    result = handlers.crawl({"startUrl": "https://example.com"})

    (record,) = handlers.job_log.read(result["jobId"])
    assert record["phase"] == "crawl"
    assert record["level"] == "info"
    assert record["data"]["siteMapId"] == result["siteMapId"]
    assert record["ts"].endswith("Z")


def test_failed_stage_writes_no_log(handlers, fake_worker, state_dir) -> None:
    fake_worker.errors["crawl"] = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        handlers.crawl({"startUrl": "https://example.com"})

    assert list(state_dir.glob("logs/*.ndjson")) == []


def test_path_like_ids_are_rejected(handlers) -> None:
    with pytest.raises(InvalidParams) as caught:
        handlers.analyze({"siteMapId": "../pins"})

    assert caught.value.field == "siteMapId"
