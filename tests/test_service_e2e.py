from __future__ import annotations

import importlib
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.client.cache import display_bucket
from src.client.gateway import BackendGateway, RequestFailed
from src.client.schemas import Candidate

FIXTURE = {
    "movie": "media/movie.mp4",
    "clip": "media/clip.mp4",
    "movie_id": "feature",
    "movie_segments": [
        {"seg_id": 100, "scene_id": 10, "scene_seg_idx": 0, "start": 0.0, "end": 2.0},
        {"seg_id": 101, "scene_id": 10, "scene_seg_idx": 1, "start": 2.0, "end": 4.0},
        {"seg_id": 102, "scene_id": 10, "scene_seg_idx": 2, "start": 4.0, "end": 6.0},
        {"seg_id": 110, "scene_id": 11, "scene_seg_idx": 0, "start": 6.0, "end": 8.0},
        {"seg_id": 111, "scene_id": 11, "scene_seg_idx": 1, "start": 8.0, "end": 10.0},
        {"seg_id": 120, "scene_id": 12, "scene_seg_idx": 0, "start": 10.0, "end": 12.0},
    ],
    "clip_segments": [
        {
            "seg_id": 1,
            "scene_id": 1,
            "scene_seg_idx": 0,
            "start": 0.0,
            "end": 1.5,
            "top": [{"seg_id": 101, "score": 0.9}, {"seg_id": 110, "score": 0.5}],
            "matched": 101,
        },
        {"seg_id": 2, "scene_id": 1, "scene_seg_idx": 1, "start": 1.5, "end": 3.0, "top": [{"seg_id": 102, "score": 0.8}]},
        {
            "seg_id": 3,
            "scene_id": 2,
            "scene_seg_idx": 0,
            "start": 3.0,
            "end": 4.0,
            "top": [{"seg_id": 110, "score": 0.7}, {"seg_id": 120, "score": 0.4}],
        },
    ],
}


@pytest.fixture()
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "recmatch_project.json").write_text(json.dumps(FIXTURE), encoding="utf-8")
    return root


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.delenv("RECMATCHER_SERVICE_PROJECT", raising=False)
    config_module = importlib.import_module("src.service.config")
    importlib.reload(config_module)
    app_module = importlib.import_module("src.service.app")
    importlib.reload(app_module)
    with TestClient(app_module.app) as test_client:
        yield test_client


def _open(client: TestClient, root: Path) -> dict:
    response = client.post("/project/open", json={"root": str(root)})
    assert response.status_code == 200
    return response.json()


def _ids(items) -> list:
    return [item["seg_id"] for item in items]


def test_requests_before_open_are_rejected(client: TestClient) -> None:
    assert client.get("/health").json()["project"] is None
    assert client.get("/scenes").status_code == 404
    assert client.get("/review/state").status_code == 404


def test_open_missing_and_invalid_projects(client: TestClient, tmp_path: Path) -> None:
    assert client.post("/project/open", json={"root": str(tmp_path / "nowhere")}).status_code == 404

    broken = tmp_path / "broken"
    broken.mkdir()
    (broken / "recmatch_project.json").write_text(
        json.dumps({"clip_segments": [{"seg_id": 1, "scene_id": 1, "start": 2.0, "end": 1.0}]}),
        encoding="utf-8",
    )
    assert client.post("/project/open", json={"root": str(broken)}).status_code == 422


def test_open_reports_media_and_lists_segments(client: TestClient, project_root: Path) -> None:
    opened = _open(client, project_root)
    assert opened["movie"] == str(project_root.resolve() / "media/movie.mp4")
    assert opened["clip"] == str(project_root.resolve() / "media/clip.mp4")

    assert client.get("/scenes").json()["scenes"] == [{"clip_scene_id": 1}, {"clip_scene_id": 2}]

    rows = client.get("/segments", params={"clip_scene_id": 1}).json()
    assert _ids(rows) == [1, 2]
    assert rows[0]["matched_orig_seg"]["seg_id"] == 101
    assert rows[0]["matched_source"] == "fixture"
    assert rows[0]["is_override"] is False
    assert rows[1]["matched_orig_seg"] is None
    assert _ids(rows[0]["top_matches"]) == [101, 110]


def test_candidate_modes_and_paging(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    scene = client.get("/candidates", params={"seg_id": 2, "mode": "scene"}).json()
    assert _ids(scene["items"]) == [100, 101, 102]

    ranked = client.get("/candidates", params={"seg_id": 2, "mode": "all"}).json()
    assert ranked["total"] == 6
    assert _ids(ranked["items"]) == [102, 101, 110, 100, 111, 120]

    page = client.get("/candidates", params={"seg_id": 2, "mode": "all", "k": 2, "offset": 2}).json()
    assert _ids(page["items"]) == [110, 100]

    assert client.get("/candidates", params={"seg_id": 2, "mode": "nearby"}).status_code == 422
    assert client.get("/candidates", params={"seg_id": 99}).status_code == 404


def test_neighborhood_and_corridor(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    hood = client.get("/candidates/scene_neighborhood", params={"seg_id": 2, "span": 1}).json()
    assert hood["anchor_scene_id"] == 10
    assert hood["scene_ids"] == [10, 11]
    assert _ids(hood["items"]) == [100, 101, 102, 110, 111]

    corridor = client.get("/candidates/corridor", params={"seg_id": 2, "span": 2}).json()
    assert corridor["anchors"] == {"prev": 101, "next": 110}
    assert _ids(corridor["prev"]) == [102, 110]
    assert _ids(corridor["next"]) == [101, 102]


def test_summary_feeds_client_buckets(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    gateway = BackendGateway("http://testserver", timeout=5.0, session=client)
    buckets = gateway.candidate_buckets(2, span=2, k=50)

    assert [c.seg_id for c in buckets["top"]] == [102]
    assert len(buckets["corridor"]) == 9
    assert [c.seg_id for c in display_bucket(buckets, "corridor")] == [102, 110, 100, 101, 111]
    assert [c.seg_id for c in buckets["scene"]] == [100, 101, 102, 110, 111, 120]


def test_apply_marks_review_stale_and_persists(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    assert client.post("/review/update", json={"seg_id": 1, "status": "ok"}).json() == {"ok": True}

    chosen = {"seg_id": 110, "start": 6.0, "end": 8.0, "scene_id": 11}
    response = client.post("/apply", json={"changes": [{"seg_id": 1, "chosen": chosen}]})
    assert response.json() == {"ok": True, "applied": 1}

    review = client.get("/review/state").json()["segs"]["1"]
    assert review["status"] == "ok" and review["stale"] is True

    row = client.get("/segments", params={"clip_scene_id": 1}).json()[0]
    assert row["matched_orig_seg"]["seg_id"] == 110
    assert row["matched_source"] == "override"
    assert row["is_override"] is True
    assert row["review_stale"] is True

    overrides = json.loads((project_root / "recmatch_overrides.json").read_text(encoding="utf-8"))
    assert overrides["1"]["seg_id"] == 110

    # reopening reads the persisted state back
    _open(client, project_root)
    assert client.get("/overrides").json()["count"] == 1
    assert client.get("/review/state").json()["segs"]["1"]["stale"] is True

    client.post("/review/update", json={"seg_id": 1, "status": "mismatch"})
    assert client.get("/review/state").json()["segs"]["1"]["stale"] is False


def test_apply_unknown_segment_changes_nothing(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    chosen = {"seg_id": 110, "start": 6.0, "end": 8.0}
    changes = [{"seg_id": 1, "chosen": chosen}, {"seg_id": 42, "chosen": chosen}]
    assert client.post("/apply", json={"changes": changes}).status_code == 404
    assert client.get("/overrides").json()["count"] == 0


def test_review_update_validation(client: TestClient, project_root: Path) -> None:
    _open(client, project_root)
    assert client.post("/review/update", json={"seg_id": 1, "status": "great"}).status_code == 422
    assert client.post("/review/update", json={"seg_id": 1, "status": ""}).status_code == 422
    assert client.post("/review/update", json={"seg_id": 77, "status": "ok"}).status_code == 404


def test_gateway_round_trip_over_service(client: TestClient, project_root: Path) -> None:
    gateway = BackendGateway("http://testserver", timeout=5.0, session=client)
    with pytest.raises(RequestFailed) as info:
        gateway.list_scenes()
    assert info.value.status == 404

    gateway.open_project(str(project_root))
    scenes = gateway.list_scenes()
    rows = [row for scene in scenes for row in gateway.list_segments(scene.id)]
    assert [row.seg_id for row in rows] == [1, 2, 3]

    gateway.apply(2, Candidate(seg_id=111, start=8.0, end=10.0, scene_id=11))
    gateway.update_review_status(3, "unsure")
    assert gateway.overrides()[2].seg_id == 111
    assert gateway.review_state() == {3: "unsure"}
