"""Paired clip/movie playback with boundary-driven loop control."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

logger = logging.getLogger("recmatcher.player")

CLIP = "clip"
MOVIE = "movie"
SOURCE_NAMES = (CLIP, MOVIE)


class SyncPolicy(str, Enum):
    """How the two sources restart when they reach their range end."""

    JOINT = "joint"
    INDEPENDENT = "independent"


class SourceState(str, Enum):
    IDLE = "idle"
    SEEKING = "seeking"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class MediaHandle(Protocol):
    """Minimal surface a media backend must expose to be paired."""

    def load(self, source: str) -> None: ...

    def seek(self, seconds: float) -> None:
        """Exact seek; implementations must not snap to keyframes."""

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def position(self) -> float: ...

    def set_muted(self, muted: bool) -> None: ...


@dataclass(frozen=True)
class PlaybackRange:
    start: float
    end: float

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Playback range end {self.end} precedes start {self.start}")

    @classmethod
    def coerce(cls, value: Union["PlaybackRange", Tuple[float, float]]) -> "PlaybackRange":
        if isinstance(value, PlaybackRange):
            return value
        start, end = value
        return cls(float(start), float(end))

    @property
    def length(self) -> float:
        return self.end - self.start


@dataclass
class _Watch:
    session: int
    end: float
    seen_inside: bool = False


@dataclass
class _Source:
    name: str
    handle: MediaHandle
    range: PlaybackRange = field(default_factory=lambda: PlaybackRange(0.0, 0.0))
    state: SourceState = SourceState.IDLE
    finished: bool = False
    live: bool = True
    watch: Optional[_Watch] = None


ErrorCallback = Callable[[str, Exception], None]


class MediaPairController:
    """Drives a clip handle and a movie handle over independent ranges.

    Boundary detection is poll based: call :meth:`tick` from a timer, or
    forward a backend's own end-of-range event to :meth:`boundary_reached`.
    Restart bookkeeping is serialized by a lock so both sources observe one
    consistent restart budget.
    """

    def __init__(
        self,
        clip: MediaHandle,
        movie: MediaHandle,
        on_error: Optional[ErrorCallback] = None,
        boundary_tolerance: float = 0.0,
    ) -> None:
        self._sources: Dict[str, _Source] = {CLIP: _Source(CLIP, clip), MOVIE: _Source(MOVIE, movie)}
        self._on_error = on_error
        self._tolerance = max(0.0, boundary_tolerance)
        self._lock = threading.RLock()
        self._session = 0
        self._policy = SyncPolicy.JOINT
        self._restarts_remaining = 0
        self._mirror = False
        self._paused_by_user = False
        self._audio_source = CLIP
        self.set_audio_source(CLIP)

    # ------------------------------------------------------------------
    @property
    def session(self) -> int:
        return self._session

    @property
    def policy(self) -> SyncPolicy:
        return self._policy

    @property
    def restarts_remaining(self) -> int:
        with self._lock:
            return self._restarts_remaining

    @property
    def mirror(self) -> bool:
        return self._mirror

    @property
    def audio_source(self) -> str:
        return self._audio_source

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return any(source.state == SourceState.PLAYING for source in self._sources.values())

    def state(self, name: str) -> SourceState:
        return self._sources[name].state

    def finished(self, name: str) -> bool:
        return self._sources[name].finished

    def range(self, name: str) -> PlaybackRange:
        return self._sources[name].range

    def has_watch(self, name: str) -> bool:
        return self._sources[name].watch is not None

    # ------------------------------------------------------------------
    def play_pair(
        self,
        clip_range: Union[PlaybackRange, Tuple[float, float]],
        movie_range: Union[PlaybackRange, Tuple[float, float]],
        sync_policy: Union[SyncPolicy, str] = SyncPolicy.JOINT,
        mirror: bool = False,
        clip_source: Optional[str] = None,
        movie_source: Optional[str] = None,
        loop_count: int = 2,
    ) -> None:
        ranges = {CLIP: PlaybackRange.coerce(clip_range), MOVIE: PlaybackRange.coerce(movie_range)}
        media = {CLIP: clip_source, MOVIE: movie_source}
        if loop_count < 1:
            raise ValueError(f"loop_count must be >= 1 (got {loop_count})")
        policy = SyncPolicy(sync_policy)

        with self._lock:
            self._deregister_watches()
            session = self._session
            self._policy = policy
            self._mirror = bool(mirror)
            self._paused_by_user = False
            self._restarts_remaining = loop_count - 1

            for name, source in self._sources.items():
                source.range = ranges[name]
                source.finished = False
                source.live = True
                source.state = SourceState.IDLE
                if media[name] is None:
                    continue
                try:
                    source.handle.load(media[name])
                except Exception as error:
                    self._fail_source(source, error)

            live = self._live_sources()
            for source in live:
                self._seek_to_start(source)
            for source in live:
                self._start(source, session)

            logger.debug(
                "Session %s: clip=%s movie=%s policy=%s restarts=%s",
                session,
                ranges[CLIP],
                ranges[MOVIE],
                policy.value,
                self._restarts_remaining,
            )

    def tick(self) -> None:
        """Compare each armed source's position against its range end."""

        with self._lock:
            session = self._session
            for source in self._live_sources():
                watch = source.watch
                if watch is None:
                    continue
                position = source.handle.position()
                if position < watch.end - self._tolerance:
                    watch.seen_inside = True
                    continue
                if watch.seen_inside or source.range.length <= self._tolerance:
                    self.boundary_reached(source.name, session)

    def boundary_reached(self, name: str, session: Optional[int] = None) -> None:
        with self._lock:
            if session is not None and session != self._session:
                logger.debug("Ignoring stale boundary for %s from session %s", name, session)
                return
            source = self._sources[name]
            if source.watch is None or not source.live:
                return
            source.watch = None
            source.handle.pause()
            source.finished = True
            source.state = SourceState.PAUSED

            if self._policy is SyncPolicy.JOINT:
                self._maybe_restart_together()
            else:
                self._maybe_restart_single(source)

    def pause(self) -> None:
        with self._lock:
            self._paused_by_user = True
            for source in self._live_sources():
                if source.state == SourceState.PLAYING:
                    source.handle.pause()
                    source.state = SourceState.PAUSED

    def resume(self) -> None:
        with self._lock:
            if not self._paused_by_user:
                return
            self._paused_by_user = False
            for source in self._live_sources():
                if source.state == SourceState.PAUSED and not source.finished:
                    source.handle.play()
                    source.state = SourceState.PLAYING

    def toggle_play_pause(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.resume()

    def stop(self) -> None:
        with self._lock:
            self._deregister_watches()
            self._restarts_remaining = 0
            for source in self._sources.values():
                source.handle.pause()
                source.finished = False
                source.state = SourceState.IDLE

    def set_audio_source(self, name: str) -> None:
        if name not in SOURCE_NAMES:
            raise ValueError(f"Unknown audio source {name!r}")
        self._audio_source = name
        for source in self._sources.values():
            source.handle.set_muted(source.name != name)

    # ------------------------------------------------------------------
    def _live_sources(self) -> List[_Source]:
        return [source for source in self._sources.values() if source.live]

    def _deregister_watches(self) -> None:
        self._session += 1
        for source in self._sources.values():
            source.watch = None

    def _fail_source(self, source: _Source, error: Exception) -> None:
        source.live = False
        source.state = SourceState.STOPPED
        logger.warning("Failed to load %s source: %s", source.name, error)
        if self._on_error is not None:
            self._on_error(source.name, error)

    def _seek_to_start(self, source: _Source) -> None:
        source.state = SourceState.SEEKING
        source.finished = False
        source.handle.seek(source.range.start)

    def _start(self, source: _Source, session: int) -> None:
        source.watch = _Watch(session=session, end=source.range.end)
        source.handle.play()
        source.state = SourceState.PLAYING

    def _maybe_restart_together(self) -> None:
        live = self._live_sources()
        if not all(source.finished for source in live):
            return
        if self._restarts_remaining > 0:
            self._restarts_remaining -= 1
            for source in live:
                self._seek_to_start(source)
            for source in live:
                self._start(source, self._session)
            logger.debug("Joint restart; %s remaining", self._restarts_remaining)
            return
        self._settle(live)

    def _maybe_restart_single(self, source: _Source) -> None:
        if self._restarts_remaining > 0:
            self._restarts_remaining -= 1
            self._seek_to_start(source)
            self._start(source, self._session)
            logger.debug("Restarted %s; %s remaining", source.name, self._restarts_remaining)
            return
        self._settle([source])

    @staticmethod
    def _settle(sources: Iterable[_Source]) -> None:
        for source in sources:
            source.state = SourceState.STOPPED


__all__ = [
    "CLIP",
    "MOVIE",
    "SOURCE_NAMES",
    "SyncPolicy",
    "SourceState",
    "MediaHandle",
    "PlaybackRange",
    "MediaPairController",
]
