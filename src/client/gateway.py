"""HTTP gateway to the Recmatcher backend."""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Mapping, Optional

import requests
from pydantic import TypeAdapter, ValidationError

from . import config
from .cache import buckets_from_summary
from .schemas import (
    ApplyChange,
    Candidate,
    CandidatesResponse,
    CandidateSummary,
    CorridorResponse,
    OkResponse,
    OpenProjectResponse,
    OverridesResponse,
    ReviewStateResponse,
    Scene,
    SceneNeighborhoodResponse,
    ScenesResponse,
    SegmentRow,
)

logger = logging.getLogger("recmatcher.gateway")

_SEGMENT_LIST = TypeAdapter(List[SegmentRow])


class RequestFailed(RuntimeError):
    """Raised when a backend call fails for any reason.

    Transport errors, non-2xx statuses and undecodable bodies are reported
    the same way; callers do not distinguish them.
    """

    def __init__(self, method: str, path: str, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"{method} {path} failed: {reason}")
        self.method = method
        self.path = path
        self.reason = reason
        self.status = status


class BackendGateway:
    """Typed, synchronous client for the backend JSON API. Never retries."""

    def __init__(
        self,
        base_url: str = config.BACKEND_URL,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            if method == "GET":
                response = self._session.get(url, params=dict(params or {}), timeout=self._timeout)
            else:
                response = self._session.post(url, json=body, timeout=self._timeout)
        except requests.RequestException as error:
            logger.warning("%s %s transport error: %s", method, url, error)
            raise RequestFailed(method, path, str(error)) from error

        logger.debug("%s %s status %s bytes %d", method, url, response.status_code, len(response.content or b""))
        if not 200 <= response.status_code < 300:
            raise RequestFailed(method, path, f"HTTP {response.status_code}", status=response.status_code)
        try:
            return response.json()
        except ValueError as error:
            raise RequestFailed(method, path, f"invalid JSON: {error}", status=response.status_code) from error

    def _decode(self, method: str, path: str, model, payload: Any):
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(payload)
            return model.model_validate(payload)
        except ValidationError as error:
            raise RequestFailed(method, path, f"schema mismatch: {error.error_count()} error(s)") from error

    def _get(self, path: str, model, params: Optional[Mapping[str, Any]] = None):
        return self._decode("GET", path, model, self._request("GET", path, params=params))

    def _post(self, path: str, model, body: Mapping[str, Any]):
        return self._decode("POST", path, model, self._request("POST", path, body=body))

    # ------------------------------------------------------------------
    def open_project(self, root: str, movie: Optional[str] = None, clip: Optional[str] = None) -> OpenProjectResponse:
        body: Dict[str, Any] = {"root": root}
        if movie:
            body["movie"] = movie
        if clip:
            body["clip"] = clip
        return self._post("/project/open", OpenProjectResponse, body)

    def list_scenes(self) -> List[Scene]:
        return self._get("/scenes", ScenesResponse).scenes

    def list_segments(self, scene_id: int) -> List[SegmentRow]:
        return self._get("/segments", _SEGMENT_LIST, {"clip_scene_id": scene_id})

    def candidates(
        self,
        seg_id: int,
        mode: str,
        k: int = config.CANDIDATE_PAGE_SIZE,
        offset: int = 0,
    ) -> CandidatesResponse:
        params = {"seg_id": seg_id, "mode": mode, "k": k, "offset": offset}
        return self._get("/candidates", CandidatesResponse, params)

    def scene_neighborhood(self, seg_id: int, span: int = config.CANDIDATE_SPAN) -> SceneNeighborhoodResponse:
        params = {"seg_id": seg_id, "span": span}
        return self._get("/candidates/scene_neighborhood", SceneNeighborhoodResponse, params)

    def corridor(self, seg_id: int, span: int = config.CANDIDATE_SPAN) -> CorridorResponse:
        return self._get("/candidates/corridor", CorridorResponse, {"seg_id": seg_id, "span": span})

    def candidate_summary(
        self,
        seg_id: int,
        span: int = config.CANDIDATE_SPAN,
        k: int = config.CANDIDATE_PAGE_SIZE,
        offset: int = 0,
    ) -> CandidateSummary:
        params = {"seg_id": seg_id, "span": span, "k": k, "offset": offset}
        return self._get("/candidates/summary", CandidateSummary, params)

    def candidate_buckets(
        self,
        seg_id: int,
        span: int = config.CANDIDATE_SPAN,
        k: int = config.CANDIDATE_PAGE_SIZE,
        offset: int = 0,
    ) -> Dict[str, List[Candidate]]:
        return buckets_from_summary(self.candidate_summary(seg_id, span=span, k=k, offset=offset))

    def apply(self, seg_id: int, chosen: Candidate) -> None:
        self.apply_changes([ApplyChange(seg_id=seg_id, chosen=chosen)])

    def apply_changes(self, changes: List[ApplyChange]) -> None:
        body = {"changes": [{"seg_id": change.seg_id, "chosen": change.chosen.to_payload()} for change in changes]}
        self._post("/apply", OkResponse, body)

    def overrides(self) -> Dict[int, Candidate]:
        response = self._get("/overrides", OverridesResponse)
        mapping: Dict[int, Candidate] = {}
        for key, candidate in (response.data or {}).items():
            try:
                mapping[int(key)] = candidate
            except ValueError:
                logger.debug("Ignoring override with non-numeric key %r", key)
        return mapping

    def update_review_status(self, seg_id: int, status: str) -> None:
        self._post("/review/update", OkResponse, {"seg_id": seg_id, "status": status})

    def review_state(self) -> Dict[int, str]:
        response = self._get("/review/state", ReviewStateResponse)
        segs = response.segs
        if segs is None and response.data is not None:
            segs = response.data.segs
        states: Dict[int, str] = {}
        for key, entry in (segs or {}).items():
            if entry.status is None:
                continue
            try:
                states[int(key)] = entry.status
            except ValueError:
                logger.debug("Ignoring review entry with non-numeric key %r", key)
        return states


class AsyncGateway:
    """Single-owner async front for :class:`BackendGateway`.

    Every call is queued on a dedicated one-thread executor, so the
    underlying session is only touched from that thread and awaiting a call
    never blocks the caller's event loop.
    """

    def __init__(self, gateway: BackendGateway) -> None:
        self._gateway = gateway
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recmatcher-gateway")

    @property
    def gateway(self) -> BackendGateway:
        return self._gateway

    async def _call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        method = getattr(self._gateway, name)
        return await loop.run_in_executor(self._executor, partial(method, *args, **kwargs))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
        self._gateway.close()

    async def open_project(self, root: str, movie: Optional[str] = None, clip: Optional[str] = None) -> OpenProjectResponse:
        return await self._call("open_project", root, movie=movie, clip=clip)

    async def list_scenes(self) -> List[Scene]:
        return await self._call("list_scenes")

    async def list_segments(self, scene_id: int) -> List[SegmentRow]:
        return await self._call("list_segments", scene_id)

    async def candidates(self, seg_id: int, mode: str, k: int = config.CANDIDATE_PAGE_SIZE, offset: int = 0) -> CandidatesResponse:
        return await self._call("candidates", seg_id, mode, k=k, offset=offset)

    async def scene_neighborhood(self, seg_id: int, span: int = config.CANDIDATE_SPAN) -> SceneNeighborhoodResponse:
        return await self._call("scene_neighborhood", seg_id, span=span)

    async def corridor(self, seg_id: int, span: int = config.CANDIDATE_SPAN) -> CorridorResponse:
        return await self._call("corridor", seg_id, span=span)

    async def candidate_buckets(
        self,
        seg_id: int,
        span: int = config.CANDIDATE_SPAN,
        k: int = config.CANDIDATE_PAGE_SIZE,
        offset: int = 0,
    ) -> Dict[str, List[Candidate]]:
        return await self._call("candidate_buckets", seg_id, span=span, k=k, offset=offset)

    async def apply(self, seg_id: int, chosen: Candidate) -> None:
        await self._call("apply", seg_id, chosen)

    async def overrides(self) -> Dict[int, Candidate]:
        return await self._call("overrides")

    async def update_review_status(self, seg_id: int, status: str) -> None:
        await self._call("update_review_status", seg_id, status)

    async def review_state(self) -> Dict[int, str]:
        return await self._call("review_state")


__all__ = ["RequestFailed", "BackendGateway", "AsyncGateway"]
