"""Ordered, id-indexed collection of the segments under review."""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from .schemas import Candidate, SegmentRow


class SegmentBook:
    """Flattened segment list across all scenes, in display order."""

    def __init__(self, rows: Iterable[SegmentRow] = ()) -> None:
        self._rows: List[SegmentRow] = []
        self._index: Dict[int, int] = {}
        self.replace(rows)

    def __iter__(self) -> Iterator[SegmentRow]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, seg_id: object) -> bool:
        return seg_id in self._index

    @property
    def rows(self) -> List[SegmentRow]:
        return list(self._rows)

    def replace(self, rows: Iterable[SegmentRow]) -> None:
        self._rows = []
        self._index = {}
        for row in rows:
            if row.seg_id in self._index:
                raise ValueError(f"Duplicate segment id {row.seg_id}")
            self._index[row.seg_id] = len(self._rows)
            self._rows.append(row)

    def get(self, seg_id: Optional[int]) -> Optional[SegmentRow]:
        if seg_id is None:
            return None
        position = self._index.get(seg_id)
        return self._rows[position] if position is not None else None

    def position(self, seg_id: int) -> Optional[int]:
        return self._index.get(seg_id)

    def first(self) -> Optional[SegmentRow]:
        return self._rows[0] if self._rows else None

    def adjacent(self, seg_id: int, offset: int) -> Optional[SegmentRow]:
        position = self._index.get(seg_id)
        if position is None:
            return None
        target = position + offset
        if 0 <= target < len(self._rows):
            return self._rows[target]
        return None

    # ------------------------------------------------------------------
    def bind_match(self, seg_id: int, candidate: Candidate, is_override: bool = True) -> Optional[SegmentRow]:
        row = self.get(seg_id)
        if row is None:
            return None
        changed = row.matched_orig_seg is None or row.matched_orig_seg.identity != candidate.identity
        if changed and row.review_status:
            row.review_stale = True
        row.matched_orig_seg = candidate
        row.is_override = is_override
        return row

    def apply_overrides(self, overrides: Mapping[int, Candidate]) -> int:
        touched = 0
        for seg_id, candidate in overrides.items():
            if self.bind_match(seg_id, candidate, is_override=True) is not None:
                touched += 1
        return touched

    def merge_review_states(self, states: Mapping[int, str]) -> int:
        touched = 0
        for seg_id, status in states.items():
            row = self.get(seg_id)
            if row is None:
                continue
            row.review_status = status
            touched += 1
        return touched

    def set_review(self, seg_id: int, status: str) -> Optional[SegmentRow]:
        row = self.get(seg_id)
        if row is None:
            return None
        row.review_status = status
        row.review_stale = False
        return row


__all__ = ["SegmentBook"]
