"""Effective-match resolution and continuity annotations for the segment list."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from .schemas import Candidate, SegmentRow

logger = logging.getLogger("recmatcher.reconcile")

CONTIGUITY_EPSILON_SEC = 0.001
SAME_CANDIDATE_EPSILON_SEC = 0.001
BOUND_CANDIDATE_EPSILON_SEC = 0.010
_FLOAT_SLACK = 1e-9


@dataclass(frozen=True)
class SpikePolicy:
    """Thresholds (seconds) for flagging an outlier match between adjacent neighbours."""

    cross_limit: float = 6.0
    ratio_gate: float = 20.0
    min_offset: float = 1.0
    cross_multiple: float = 5.0
    cross_floor: float = 0.001


DEFAULT_SPIKE_POLICY = SpikePolicy()


@dataclass
class SegmentAnnotation:
    row: SegmentRow
    match: Optional[Candidate]
    from_prev: bool
    to_next: bool
    island_id: int
    spike: bool


def effective_match(row: Optional[SegmentRow], overrides: Optional[Mapping[int, Candidate]] = None) -> Optional[Candidate]:
    """Override, then server-recorded match, then best-ranked candidate."""

    if row is None:
        return None
    if overrides:
        override = overrides.get(row.seg_id)
        if override is not None:
            return override
    if row.matched_orig_seg is not None:
        return row.matched_orig_seg
    if row.top_matches:
        return row.top_matches[0]
    return None


def preview_ranges(row: SegmentRow, match: Optional[Candidate]) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    clip_range = (row.clip.start, row.clip.end)
    if match is None:
        return clip_range, (0.0, row.clip.duration)
    return clip_range, (match.start, match.end)


def _ids_consecutive(first: Optional[int], second: Optional[int]) -> bool:
    return first is not None and second is not None and second == first + 1


def is_contiguous(earlier: Optional[Candidate], later: Optional[Candidate]) -> bool:
    if earlier is None or later is None:
        return False
    if _ids_consecutive(earlier.seg_id, later.seg_id):
        return True
    if (
        earlier.scene_id is not None
        and earlier.scene_id == later.scene_id
        and _ids_consecutive(earlier.scene_seg_idx, later.scene_seg_idx)
    ):
        return True
    return abs(later.start - earlier.end) <= CONTIGUITY_EPSILON_SEC + _FLOAT_SLACK


def is_spike(
    prev: Optional[Candidate],
    current: Optional[Candidate],
    nxt: Optional[Candidate],
    policy: SpikePolicy = DEFAULT_SPIKE_POLICY,
) -> bool:
    if prev is None or current is None or nxt is None:
        return False
    mid = current.midpoint
    dt1 = abs(mid - prev.end)
    dt2 = abs(nxt.start - mid)
    dt_cross = abs(nxt.start - prev.end)
    ratio = min(dt1, dt2) / max(dt_cross, policy.cross_floor)
    adjacent_like = (
        dt_cross <= policy.cross_limit
        or ratio >= policy.ratio_gate
        or _ids_consecutive(prev.seg_id, nxt.seg_id)
    )
    return (
        adjacent_like
        and dt1 > policy.min_offset
        and dt2 > policy.min_offset
        and min(dt1, dt2) > policy.cross_multiple * dt_cross
    )


def annotate_segments(
    rows: Sequence[SegmentRow],
    overrides: Optional[Mapping[int, Candidate]] = None,
    policy: SpikePolicy = DEFAULT_SPIKE_POLICY,
) -> List[SegmentAnnotation]:
    matches = [effective_match(row, overrides) for row in rows]
    annotations: List[SegmentAnnotation] = []
    island = 0
    for index, row in enumerate(rows):
        prev_match = matches[index - 1] if index > 0 else None
        next_match = matches[index + 1] if index + 1 < len(rows) else None
        current = matches[index]

        from_prev = is_contiguous(prev_match, current)
        if not from_prev:
            island += 1
        to_next = is_contiguous(current, next_match)
        spike = is_spike(prev_match, current, next_match, policy)
        if spike:
            logger.debug(
                "Spike at segment %s: prev_end=%.3f mid=%.3f next_start=%.3f",
                row.seg_id,
                prev_match.end,
                current.midpoint,
                next_match.start,
            )
        annotations.append(
            SegmentAnnotation(
                row=row,
                match=current,
                from_prev=from_prev,
                to_next=to_next,
                island_id=island,
                spike=spike,
            )
        )
    return annotations


def same_candidate(first: Optional[Candidate], second: Optional[Candidate]) -> bool:
    if first is None or second is None:
        return False
    if first.seg_id is not None and second.seg_id is not None:
        return first.seg_id == second.seg_id
    return (
        abs(first.start - second.start) < SAME_CANDIDATE_EPSILON_SEC
        and abs(first.end - second.end) < SAME_CANDIDATE_EPSILON_SEC
    )


def is_bound_candidate(row: Optional[SegmentRow], candidate: Candidate) -> bool:
    if row is None or row.matched_orig_seg is None:
        return False
    bound = row.matched_orig_seg
    if bound.seg_id is not None and candidate.seg_id is not None and bound.seg_id == candidate.seg_id:
        return True
    return (
        abs(bound.start - candidate.start) <= BOUND_CANDIDATE_EPSILON_SEC
        and abs(bound.end - candidate.end) <= BOUND_CANDIDATE_EPSILON_SEC
    )


__all__ = [
    "CONTIGUITY_EPSILON_SEC",
    "SpikePolicy",
    "DEFAULT_SPIKE_POLICY",
    "SegmentAnnotation",
    "effective_match",
    "preview_ranges",
    "is_contiguous",
    "is_spike",
    "annotate_segments",
    "same_candidate",
    "is_bound_candidate",
]
