from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

from src.client.gateway import AsyncGateway, BackendGateway, RequestFailed
from src.client.schemas import Candidate


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._text = text if text is not None else json.dumps(payload)
        self.content = self._text.encode("utf-8")

    def json(self) -> Any:
        return json.loads(self._text)


class FakeSession:
    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Tuple[str, str, Any]] = []
        self.closed = False

    def route(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def _dispatch(self, method: str, url: str, data: Any) -> FakeResponse:
        path = url.replace("http://backend", "")
        self.calls.append((method, path, data))
        response = self.routes.get((method, path))
        if response is None:
            return FakeResponse(404, {"detail": "missing"})
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, params=None, timeout=None) -> FakeResponse:
        return self._dispatch("GET", url, params)

    def post(self, url: str, json=None, timeout=None) -> FakeResponse:
        return self._dispatch("POST", url, json)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def gateway(session: FakeSession) -> BackendGateway:
    return BackendGateway("http://backend/", timeout=1.0, session=session)


def test_list_segments_decodes_rows(gateway: BackendGateway, session: FakeSession) -> None:
    session.route(
        "GET",
        "/segments",
        FakeResponse(payload=[{"seg_id": 1, "clip": {"start": 0.0, "end": 1.0}, "top_matches": []}]),
    )
    rows = gateway.list_segments(4)
    assert [row.seg_id for row in rows] == [1]
    assert session.calls == [("GET", "/segments", {"clip_scene_id": 4})]


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(500, {"detail": "boom"}),
        FakeResponse(200, text="not json"),
        FakeResponse(200, {"unexpected": True}),
        requests.ConnectionError("refused"),
    ],
)
def test_failures_surface_as_request_failed(gateway: BackendGateway, session: FakeSession, response) -> None:
    session.route("GET", "/scenes", response)
    with pytest.raises(RequestFailed) as info:
        gateway.list_scenes()
    assert info.value.path == "/scenes"


def test_inverted_candidate_fails_decoding(gateway: BackendGateway, session: FakeSession) -> None:
    row = {
        "seg_id": 3,
        "clip": {"start": 0.0, "end": 1.0},
        "top_matches": [{"seg_id": 300, "start": 50.0, "end": 49.0}],
    }
    session.route("GET", "/segments", FakeResponse(payload=[row]))
    with pytest.raises(RequestFailed) as info:
        gateway.list_segments(2)
    assert "schema mismatch" in info.value.reason


def test_http_status_is_recorded(gateway: BackendGateway, session: FakeSession) -> None:
    session.route("POST", "/apply", FakeResponse(409, {"detail": "conflict"}))
    with pytest.raises(RequestFailed) as info:
        gateway.apply(1, Candidate(seg_id=3, start=1.0, end=2.0))
    assert info.value.status == 409


def test_apply_sends_change_list(gateway: BackendGateway, session: FakeSession) -> None:
    session.route("POST", "/apply", FakeResponse(payload={"ok": True}))
    gateway.apply(7, Candidate(seg_id=3, start=1.0, end=2.0, scene_id=5))
    assert session.calls[-1] == (
        "POST",
        "/apply",
        {"changes": [{"seg_id": 7, "chosen": {"seg_id": 3, "start": 1.0, "end": 2.0, "scene_id": 5}}]},
    )


def test_open_project_omits_missing_paths(gateway: BackendGateway, session: FakeSession) -> None:
    session.route("POST", "/project/open", FakeResponse(payload={"ok": True, "movie": "/m.mp4"}))
    response = gateway.open_project("/proj")
    assert response.movie == "/m.mp4" and response.clip is None
    assert session.calls[-1][2] == {"root": "/proj"}


def test_overrides_keyed_by_segment(gateway: BackendGateway, session: FakeSession) -> None:
    session.route(
        "GET",
        "/overrides",
        FakeResponse(payload={"count": 2, "data": {"4": {"seg_id": 9, "start": 1.0, "end": 2.0}, "x": {"start": 0.0, "end": 1.0}}}),
    )
    overrides = gateway.overrides()
    assert list(overrides) == [4]
    assert overrides[4].seg_id == 9


def test_review_state_accepts_both_envelopes(gateway: BackendGateway, session: FakeSession) -> None:
    session.route("GET", "/review/state", FakeResponse(payload={"segs": {"1": {"status": "ok"}, "2": {}}}))
    assert gateway.review_state() == {1: "ok"}

    session.route("GET", "/review/state", FakeResponse(payload={"data": {"segs": {"3": {"status": "mismatch"}}}}))
    assert gateway.review_state() == {3: "mismatch"}


def test_candidate_buckets_from_summary(gateway: BackendGateway, session: FakeSession) -> None:
    session.route(
        "GET",
        "/candidates/summary",
        FakeResponse(
            payload={
                "top": {"items": [{"seg_id": 1, "start": 0.0, "end": 1.0}]},
                "neighborhood": {"items": [{"seg_id": 2, "start": 1.0, "end": 2.0}]},
                "corridor": {"prev": [{"seg_id": 3, "start": 2.0, "end": 3.0}]},
            }
        ),
    )
    buckets = gateway.candidate_buckets(5, span=1, k=10)
    assert [c.seg_id for c in buckets["top"]] == [1]
    assert [c.seg_id for c in buckets["scene"]] == [2]
    assert [c.seg_id for c in buckets["corridor"]] == [3]
    assert buckets["all"] == []
    assert session.calls[-1][2] == {"seg_id": 5, "span": 1, "k": 10, "offset": 0}


def test_async_gateway_runs_calls_off_loop(gateway: BackendGateway, session: FakeSession) -> None:
    session.route("GET", "/scenes", FakeResponse(payload={"scenes": [{"clip_scene_id": 2}, {"clip_scene_id": 5}]}))
    async_gateway = AsyncGateway(gateway)
    try:
        scenes = asyncio.run(async_gateway.list_scenes())
    finally:
        async_gateway.shutdown()
    assert [scene.id for scene in scenes] == [2, 5]
    assert session.closed
