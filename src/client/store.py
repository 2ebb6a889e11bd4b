"""Session state container and operator actions for the review client."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlparse

from . import config
from .cache import Buckets, CandidateBucketCache, display_bucket
from .gateway import AsyncGateway, RequestFailed
from .player import CLIP, SOURCE_NAMES, MediaPairController, PlaybackRange, SyncPolicy
from .reconcile import (
    DEFAULT_SPIKE_POLICY,
    SegmentAnnotation,
    SpikePolicy,
    annotate_segments,
    effective_match,
    preview_ranges,
)
from .review import ReviewStateStore
from .schemas import BUCKET_NAMES, Candidate, ReviewStatus, Scene, SegmentRow
from .segments import SegmentBook

logger = logging.getLogger("recmatcher.store")

MediaAccess = Callable[[str], Optional[str]]
Observer = Callable[[str], None]


@dataclass(frozen=True)
class PreviewPlan:
    """Everything the media pair controller needs to preview one pairing."""

    seg_id: int
    clip_range: PlaybackRange
    movie_range: PlaybackRange
    sync_policy: SyncPolicy
    mirror: bool
    clip_source: Optional[str]
    movie_source: Optional[str]
    loop_count: int
    candidate: Optional[Candidate] = None

    def play_on(self, controller: MediaPairController) -> None:
        controller.play_pair(
            self.clip_range,
            self.movie_range,
            sync_policy=self.sync_policy,
            mirror=self.mirror,
            clip_source=self.clip_source,
            movie_source=self.movie_source,
            loop_count=self.loop_count,
        )


PreviewSink = Callable[[PreviewPlan], None]


@dataclass
class SessionState:
    project_root: str = ""
    movie_path: str = field(default_factory=lambda: config.DEFAULT_MOVIE_PATH or "")
    clip_path: str = field(default_factory=lambda: config.DEFAULT_CLIP_PATH or "")
    scenes: List[Scene] = field(default_factory=list)
    segments: SegmentBook = field(default_factory=SegmentBook)
    selected_id: Optional[int] = None
    bucket_mode: str = "top"
    candidates: List[Candidate] = field(default_factory=list)
    overrides: Dict[int, Candidate] = field(default_factory=dict)
    loop_pair: bool = True
    mirror_clip: bool = False
    loop_count: int = config.DEFAULT_LOOP_COUNT
    audio_source: str = CLIP
    last_preview: Optional[PreviewPlan] = None
    last_error: Optional[str] = None

    @property
    def selected(self) -> Optional[SegmentRow]:
        return self.segments.get(self.selected_id)


def local_media_access(path: str) -> Optional[str]:
    candidate = Path(path).expanduser()
    if candidate.is_file():
        return str(candidate)
    logger.debug("Media path %s is not a readable file", candidate)
    return None


def parse_deep_link(url: str) -> Optional[str]:
    """Extract the project root from a ``recmatcher://`` or ``file://`` URL."""

    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    if scheme == "file":
        path = unquote(parsed.path)
        return path or None
    if scheme != config.DEEP_LINK_SCHEME:
        return None
    roots = parse_qs(parsed.query).get("root")
    if roots and roots[0]:
        return roots[0]
    if parsed.netloc in ("", "open") and parsed.path not in ("", "/"):
        return unquote(parsed.path)
    return None


class AppStore:
    """Single owner of session state; every mutation ends with a notification.

    All coroutines are expected to run on one event loop. Network calls go
    through :class:`AsyncGateway`, so awaiting them never blocks that loop.
    """

    def __init__(
        self,
        gateway: AsyncGateway,
        preview: Optional[PreviewSink] = None,
        media_access: MediaAccess = local_media_access,
        state: Optional[SessionState] = None,
        spike_policy: SpikePolicy = DEFAULT_SPIKE_POLICY,
    ) -> None:
        self._gateway = gateway
        self._preview = preview
        self._media_access = media_access
        self.state = state or SessionState()
        self._cache = CandidateBucketCache(fetcher=gateway.candidate_buckets)
        self._review = ReviewStateStore(gateway, self.state.segments)
        self._spike_policy = spike_policy
        self._observers: List[Observer] = []

    @property
    def cache(self) -> CandidateBucketCache:
        return self._cache

    # ------------------------------------------------------------------
    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, topic: str) -> None:
        for observer in list(self._observers):
            observer(topic)

    def _report(self, message: str, error: Exception) -> None:
        self.state.last_error = f"{message}: {error}"
        logger.warning("%s: %s", message, error)
        self._notify("error")

    def shutdown(self) -> None:
        self._gateway.shutdown()

    # ------------------------------------------------------------------
    async def open_project(
        self,
        root: Optional[str] = None,
        movie: Optional[str] = None,
        clip: Optional[str] = None,
    ) -> bool:
        state = self.state
        if root is not None:
            state.project_root = root
        if movie is not None:
            state.movie_path = movie
        if clip is not None:
            state.clip_path = clip
        if not state.project_root:
            self._report("Cannot open project", ValueError("project root is empty"))
            return False

        try:
            response = await self._gateway.open_project(
                state.project_root,
                movie=state.movie_path or None,
                clip=state.clip_path or None,
            )
        except RequestFailed as error:
            self._report("Opening project failed", error)
            return False

        if response.movie and not state.movie_path:
            state.movie_path = response.movie
        if response.clip and not state.clip_path:
            state.clip_path = response.clip
        logger.info("Opened project %s", state.project_root)
        self._notify("project")
        return await self.load_everything_after_open()

    async def open_from_url(self, url: str) -> bool:
        root = parse_deep_link(url)
        if not root:
            logger.warning("Ignoring unsupported deep link %s", url)
            return False
        return await self.open_project(root=root)

    async def load_everything_after_open(self) -> bool:
        state = self.state
        try:
            scenes = await self._gateway.list_scenes()
            flat: List[SegmentRow] = []
            for scene in scenes:
                flat.extend(await self._gateway.list_segments(scene.clip_scene_id))
            book = SegmentBook(flat)
        except (RequestFailed, ValueError) as error:
            state.scenes = []
            state.segments.replace([])
            state.selected_id = None
            state.candidates = []
            state.overrides = {}
            self._cache.clear()
            self._notify("segments")
            self._report("Loading segments failed", error)
            return False

        state.scenes = scenes
        state.segments.replace(book)
        state.selected_id = None
        state.candidates = []
        state.overrides = {}
        self._cache.clear()
        logger.info("Loaded %d segments across %d scenes", len(book), len(scenes))
        self._notify("segments")

        await self.refresh_overrides()
        await self.refresh_review_states()
        first = state.segments.first()
        if first is not None:
            await self.select(first.seg_id)
        return True

    # ------------------------------------------------------------------
    async def select(self, seg_id: int) -> bool:
        row = self.state.segments.get(seg_id)
        if row is None:
            logger.warning("Cannot select unknown segment %s", seg_id)
            return False
        self.state.selected_id = seg_id
        self._notify("selection")
        self._request_preview(row, effective_match(row, self.state.overrides))
        await self._load_candidates(seg_id)
        return True

    async def select_adjacent(self, offset: int) -> bool:
        current = self.state.selected_id
        if current is None:
            return False
        row = self.state.segments.adjacent(current, offset)
        if row is None:
            return False
        return await self.select(row.seg_id)

    async def set_bucket_mode(self, mode: str) -> None:
        if mode not in BUCKET_NAMES:
            raise ValueError(f"Unknown candidate bucket {mode!r}")
        self.state.bucket_mode = mode
        seg_id = self.state.selected_id
        if seg_id is None:
            return
        cached = self._cache.peek(seg_id)
        if cached is not None:
            self._show_candidates(cached)
            return
        await self._load_candidates(seg_id)

    def bucket(self, name: str) -> List[Candidate]:
        if self.state.selected_id is None:
            return []
        return display_bucket(self._cache.peek(self.state.selected_id), name)

    def preview_candidate(self, candidate: Candidate) -> Optional[PreviewPlan]:
        row = self.state.selected
        if row is None:
            return None
        return self._request_preview(row, candidate)

    def update_playback(
        self,
        loop_pair: Optional[bool] = None,
        mirror_clip: Optional[bool] = None,
        loop_count: Optional[int] = None,
        audio_source: Optional[str] = None,
    ) -> None:
        state = self.state
        if audio_source is not None:
            if audio_source not in SOURCE_NAMES:
                raise ValueError(f"Unknown audio source {audio_source!r}")
            state.audio_source = audio_source
        replay = False
        if loop_pair is not None and loop_pair != state.loop_pair:
            state.loop_pair = loop_pair
            replay = True
        if mirror_clip is not None:
            state.mirror_clip = mirror_clip
        if loop_count is not None:
            state.loop_count = config.clamp_loop_count(loop_count)
        self._notify("playback")
        row = state.selected
        if replay and row is not None:
            self._request_preview(row, effective_match(row, state.overrides))

    def annotations(self) -> List[SegmentAnnotation]:
        return annotate_segments(self.state.segments.rows, self.state.overrides, self._spike_policy)

    # ------------------------------------------------------------------
    async def apply_candidate(self, candidate: Candidate, seg_id: Optional[int] = None) -> bool:
        target = seg_id if seg_id is not None else self.state.selected_id
        if target is None or target not in self.state.segments:
            logger.warning("Apply requested without a valid segment (%s)", target)
            return False

        try:
            await self._gateway.apply(target, candidate)
        except RequestFailed as error:
            self._report(f"Applying match to segment {target} failed", error)
            return False

        self.state.segments.bind_match(target, candidate, is_override=True)
        self.state.overrides[target] = candidate
        logger.info("Applied candidate %s to segment %s", candidate.identity, target)
        self._notify("segments")

        await self.refresh_overrides()
        self._cache.invalidate(target)
        if self.state.selected_id == target:
            await self.select(target)
        return True

    async def refresh_overrides(self) -> bool:
        try:
            overrides = await self._gateway.overrides()
        except RequestFailed as error:
            self._report("Refreshing overrides failed", error)
            return False
        self.state.overrides = dict(overrides)
        self.state.segments.apply_overrides(overrides)
        self._notify("overrides")
        return True

    async def update_review_status(self, status: str, seg_id: Optional[int] = None) -> bool:
        target = seg_id if seg_id is not None else self.state.selected_id
        if target is None or target not in self.state.segments:
            return False
        ok = await self._review.set_status(target, ReviewStatus(status))
        if not ok:
            self._report(f"Updating review status of segment {target} failed", self._review.last_error)
            return False
        self._notify("review")
        return True

    async def refresh_review_states(self) -> bool:
        states = await self._review.bulk_refresh()
        if states is None:
            self._report("Refreshing review states failed", self._review.last_error)
            return False
        self._notify("review")
        return True

    # ------------------------------------------------------------------
    async def _load_candidates(self, seg_id: int) -> None:
        try:
            buckets = await self._cache.get_buckets(seg_id)
        except RequestFailed as error:
            if self.state.selected_id == seg_id:
                self.state.candidates = []
                self._notify("candidates")
            self._report(f"Loading candidates for segment {seg_id} failed", error)
            return

        if self.state.selected_id != seg_id:
            logger.debug("Discarding candidates for %s; selection is now %s", seg_id, self.state.selected_id)
            return
        self._show_candidates(buckets)

    def _show_candidates(self, buckets: Buckets) -> None:
        self.state.candidates = display_bucket(buckets, self.state.bucket_mode)
        self._notify("candidates")

    def _resolve_media(self, path: str) -> Optional[str]:
        if not path:
            return None
        return self._media_access(path)

    def _request_preview(self, row: SegmentRow, match: Optional[Candidate]) -> PreviewPlan:
        clip_range, movie_range = preview_ranges(row, match)
        plan = PreviewPlan(
            seg_id=row.seg_id,
            clip_range=PlaybackRange(*clip_range),
            movie_range=PlaybackRange(*movie_range),
            sync_policy=SyncPolicy.JOINT if self.state.loop_pair else SyncPolicy.INDEPENDENT,
            mirror=self.state.mirror_clip,
            clip_source=self._resolve_media(self.state.clip_path),
            movie_source=self._resolve_media(self.state.movie_path),
            loop_count=self.state.loop_count,
            candidate=match,
        )
        self.state.last_preview = plan
        if self._preview is not None:
            self._preview(plan)
        return plan


__all__ = [
    "MediaAccess",
    "Observer",
    "PreviewPlan",
    "PreviewSink",
    "SessionState",
    "local_media_access",
    "parse_deep_link",
    "AppStore",
]
