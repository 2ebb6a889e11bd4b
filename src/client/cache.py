"""Per-segment cache of ranked candidate buckets."""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .schemas import BUCKET_NAMES, Candidate, CandidateSummary

Buckets = Dict[str, List[Candidate]]
BucketFetcher = Callable[[int], Awaitable[Buckets]]

logger = logging.getLogger("recmatcher.cache")


def buckets_from_summary(summary: CandidateSummary) -> Buckets:
    """Map a summary response onto the four display buckets.

    The "scene" bucket is the anchor-scene neighborhood, not the same-scene
    filter the summary also carries. The corridor bucket is prev, current
    and next concatenated in that order and may contain duplicates.
    """

    buckets: Buckets = {}
    buckets["top"] = list(summary.top.items or []) if summary.top else []
    buckets["scene"] = list(summary.neighborhood.items or []) if summary.neighborhood else []
    buckets["all"] = list(summary.all.items or []) if summary.all else []
    corridor: List[Candidate] = []
    if summary.corridor:
        corridor.extend(summary.corridor.prev or [])
        corridor.extend(summary.corridor.current or [])
        corridor.extend(summary.corridor.next or [])
    buckets["corridor"] = corridor
    return buckets


def corridor_key(candidate: Candidate) -> Tuple[int, int, int]:
    seg_id = candidate.seg_id if candidate.seg_id is not None else -1
    return seg_id, int(candidate.start * 1000), int(candidate.end * 1000)


def dedup_corridor(items: Iterable[Candidate]) -> List[Candidate]:
    seen = set()
    unique: List[Candidate] = []
    for candidate in items:
        key = corridor_key(candidate)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def display_bucket(buckets: Optional[Buckets], name: str) -> List[Candidate]:
    if not buckets:
        return []
    items = buckets.get(name, [])
    if name == "corridor":
        return dedup_corridor(items)
    return list(items)


class CandidateBucketCache:
    """Memoizes the bucket set of each segment until it is invalidated.

    Misses are filled by one batched ``fetcher`` call. Concurrent misses for
    the same segment share the fetch already in flight, so switching bucket
    tabs while a summary is loading never issues a second request.
    """

    def __init__(self, fetcher: Optional[BucketFetcher] = None) -> None:
        self._fetcher = fetcher
        self._entries: Dict[int, Buckets] = {}
        self._generations: Dict[int, int] = {}
        self._inflight: Dict[int, "asyncio.Future[Buckets]"] = {}

    def __contains__(self, seg_id: object) -> bool:
        return seg_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    async def get_buckets(self, seg_id: int) -> Buckets:
        entry = self._entries.get(seg_id)
        if entry is not None:
            return entry
        if self._fetcher is None:
            raise LookupError(f"No cached buckets for segment {seg_id} and no fetcher configured")
        pending = self._inflight.get(seg_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(seg_id, self.generation(seg_id)))
            self._inflight[seg_id] = pending
            pending.add_done_callback(partial(self._forget, seg_id))
        else:
            logger.debug("Joining in-flight bucket fetch for segment %s", seg_id)
        return await asyncio.shield(pending)

    async def get_bucket(self, seg_id: int, bucket: str) -> List[Candidate]:
        buckets = await self.get_buckets(seg_id)
        return list(buckets.get(bucket, []))

    async def _fetch(self, seg_id: int, generation: int) -> Buckets:
        fetched = await self._fetcher(seg_id)
        self.store(seg_id, fetched, generation)
        return self._entries.get(seg_id, fetched)

    def _forget(self, seg_id: int, future: "asyncio.Future[Buckets]") -> None:
        if self._inflight.get(seg_id) is future:
            del self._inflight[seg_id]

    def peek(self, seg_id: int) -> Optional[Buckets]:
        return self._entries.get(seg_id)

    def generation(self, seg_id: int) -> int:
        return self._generations.get(seg_id, 0)

    def store(self, seg_id: int, buckets: Buckets, generation: Optional[int] = None) -> bool:
        """Cache ``buckets``; refuses results fetched before an invalidation."""

        if generation is not None and generation != self.generation(seg_id):
            logger.debug("Dropping stale buckets for segment %s (generation %s)", seg_id, generation)
            return False
        normalized: Buckets = {name: list(buckets.get(name, [])) for name in BUCKET_NAMES}
        for name, items in buckets.items():
            normalized.setdefault(name, list(items))
        self._entries[seg_id] = normalized
        return True

    def invalidate(self, seg_id: int) -> None:
        # a fetch already in flight completes for its awaiters but is not stored or shared
        self._inflight.pop(seg_id, None)
        self._entries.pop(seg_id, None)
        self._generations[seg_id] = self.generation(seg_id) + 1

    def clear(self) -> None:
        for seg_id in set(self._entries) | set(self._inflight):
            self.invalidate(seg_id)


__all__ = [
    "Buckets",
    "BucketFetcher",
    "buckets_from_summary",
    "corridor_key",
    "dedup_corridor",
    "display_bucket",
    "CandidateBucketCache",
]
