"""Pydantic models for the Recmatcher backend wire format."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

BUCKET_NAMES = ("top", "scene", "corridor", "all")

_DERIVED_ID_FLAG = 1 << 62


def derive_candidate_id(scene_id: Optional[int], scene_seg_idx: Optional[int], start: float) -> int:
    """Stable identity for a candidate that arrived without a ``seg_id``.

    Packs scene and within-scene index into the high bits and XORs the start
    time (milliseconds) into the low 32 bits. The flag bit keeps derived ids
    out of the range the backend hands out.
    """

    ms = int(round(float(start) * 1000)) & 0xFFFFFFFF
    scene_bits = (int(scene_id or 0) & 0x3FFF) << 48
    idx_bits = (int(scene_seg_idx or 0) & 0xFFFF) << 32
    return (_DERIVED_ID_FLAG | scene_bits | idx_bits) ^ ms


class ReviewStatus(str, Enum):
    """Operator classification of a reviewed segment."""

    UNSET = ""
    OK = "ok"
    NEED_TRIM = "needTrim"
    UNSURE = "unsure"
    MISMATCH = "mismatch"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReviewStatus":
        if not value:
            return cls.UNSET
        try:
            return cls(value)
        except ValueError:
            return cls.UNSET


class Scene(BaseModel):
    clip_scene_id: int

    @property
    def id(self) -> int:
        return self.clip_scene_id


class ClipInfo(BaseModel):
    """Clip-side time range of a segment under review."""

    start: float
    end: float
    scene_id: Optional[int] = None
    scene_seg_idx: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self) -> "ClipInfo":
        if not self.start < self.end:
            raise ValueError(f"clip range must satisfy start < end (got {self.start}, {self.end})")
        return self

    @property
    def duration(self) -> float:
        return self.end - self.start


class Candidate(BaseModel):
    """A proposed matching interval in the reference movie."""

    model_config = ConfigDict(frozen=True)

    seg_id: Optional[int] = Field(None, description="Backend-assigned movie segment id")
    scene_seg_idx: Optional[int] = Field(None, description="Index of the segment inside its scene")
    start: float
    end: float
    scene_id: Optional[int] = Field(None, description="Movie scene the segment belongs to")
    score: Optional[float] = None
    faiss_id: Optional[int] = Field(None, description="Vector index identifier")
    movie_id: Optional[str] = None
    shot_id: Optional[int] = None
    source: Optional[str] = Field(None, description="Retrieval method that produced the candidate")

    @model_validator(mode="after")
    def _check_range(self) -> "Candidate":
        if self.end < self.start:
            raise ValueError(f"candidate range must satisfy start <= end (got {self.start}, {self.end})")
        return self

    @property
    def identity(self) -> int:
        if self.seg_id is not None:
            return self.seg_id
        return derive_candidate_id(self.scene_id, self.scene_seg_idx, self.start)

    @property
    def midpoint(self) -> float:
        return 0.5 * (self.start + self.end)

    def to_payload(self) -> Dict[str, object]:
        return self.model_dump(exclude_none=True)


class SegmentRow(BaseModel):
    """A clip segment together with its match and review bookkeeping."""

    seg_id: int
    clip: ClipInfo
    top_matches: Optional[List[Candidate]] = None
    matched_orig_seg: Optional[Candidate] = None
    matched_source: Optional[str] = None
    is_override: Optional[bool] = None
    review_status: Optional[str] = None
    review_stale: Optional[bool] = None

    @property
    def id(self) -> int:
        return self.seg_id

    @property
    def review(self) -> ReviewStatus:
        return ReviewStatus.parse(self.review_status)


# ---------------------------------------------------------------------------
# Response envelopes


class OkResponse(BaseModel):
    ok: Optional[bool] = None


class OpenProjectResponse(BaseModel):
    ok: bool
    movie: Optional[str] = None
    clip: Optional[str] = None


class ScenesResponse(BaseModel):
    ok: Optional[bool] = None
    scenes: List[Scene]


class CandidatesResponse(BaseModel):
    ok: bool
    seg_id: int
    mode: Optional[str] = None
    total: Optional[int] = None
    items: List[Candidate]


class SceneNeighborhoodResponse(BaseModel):
    ok: bool
    seg_id: int
    anchor_scene_id: Optional[int] = None
    scene_ids: List[int] = Field(default_factory=list)
    items: List[Candidate]


class CorridorAnchors(BaseModel):
    prev: Optional[int] = None
    next: Optional[int] = None


class CorridorResponse(BaseModel):
    ok: bool
    seg_id: int
    anchors: Optional[CorridorAnchors] = None
    span: int
    prev: List[Candidate]
    next: List[Candidate]


class SummaryPage(BaseModel):
    total: Optional[int] = None
    items: Optional[List[Candidate]] = None


class SummaryCorridor(BaseModel):
    span: Optional[int] = None
    prev: Optional[List[Candidate]] = None
    current: Optional[List[Candidate]] = None
    next: Optional[List[Candidate]] = None


class SummaryNeighborhood(BaseModel):
    span: Optional[int] = None
    items: Optional[List[Candidate]] = None


class CandidateSummary(BaseModel):
    """All candidate tabs for one segment, fetched in a single round trip."""

    ok: Optional[bool] = None
    seg_id: Optional[int] = None
    top: Optional[SummaryPage] = None
    scene: Optional[SummaryPage] = None
    all: Optional[SummaryPage] = None
    corridor: Optional[SummaryCorridor] = None
    neighborhood: Optional[SummaryNeighborhood] = None


class OverridesResponse(BaseModel):
    path: Optional[str] = None
    count: Optional[int] = None
    data: Optional[Dict[str, Candidate]] = None


class ReviewEntry(BaseModel):
    status: Optional[str] = None


class ReviewStateData(BaseModel):
    segs: Optional[Dict[str, ReviewEntry]] = None


class ReviewStateResponse(BaseModel):
    ok: Optional[bool] = None
    segs: Optional[Dict[str, ReviewEntry]] = None
    data: Optional[ReviewStateData] = None


# ---------------------------------------------------------------------------
# Request bodies


class OpenProjectRequest(BaseModel):
    root: str
    movie: Optional[str] = None
    clip: Optional[str] = None


class ApplyChange(BaseModel):
    seg_id: int
    chosen: Candidate


class ApplyRequest(BaseModel):
    changes: List[ApplyChange] = Field(default_factory=list)


class ReviewUpdateRequest(BaseModel):
    seg_id: int
    status: str


__all__ = [
    "BUCKET_NAMES",
    "derive_candidate_id",
    "ReviewStatus",
    "Scene",
    "ClipInfo",
    "Candidate",
    "SegmentRow",
    "OkResponse",
    "OpenProjectResponse",
    "ScenesResponse",
    "CandidatesResponse",
    "SceneNeighborhoodResponse",
    "CorridorAnchors",
    "CorridorResponse",
    "SummaryPage",
    "SummaryCorridor",
    "SummaryNeighborhood",
    "CandidateSummary",
    "OverridesResponse",
    "ReviewEntry",
    "ReviewStateData",
    "ReviewStateResponse",
    "OpenProjectRequest",
    "ApplyChange",
    "ApplyRequest",
    "ReviewUpdateRequest",
]
