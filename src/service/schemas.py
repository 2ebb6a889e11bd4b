"""Pydantic models for the project fixture served by the mock backend."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class MovieSegment(BaseModel):
    """One segment of the reference movie that can be proposed as a match."""

    seg_id: int = Field(..., description="Stable movie segment identifier")
    scene_id: int = Field(..., description="Movie scene the segment belongs to")
    scene_seg_idx: int = Field(..., ge=0, description="Index of the segment inside its scene")
    start: float = Field(..., ge=0.0, description="Start time in seconds")
    end: float = Field(..., description="End time in seconds")
    shot_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self) -> "MovieSegment":
        if self.end < self.start:
            raise ValueError(f"movie segment {self.seg_id} ends before it starts")
        return self


class ScoredRef(BaseModel):
    seg_id: int = Field(..., description="Movie segment id")
    score: float = Field(0.0, description="Similarity reported by the retrieval step")


class ClipSegment(BaseModel):
    """A segment of the clip under review together with its ranked proposals."""

    seg_id: int
    scene_id: int = Field(..., description="Clip scene the segment belongs to")
    scene_seg_idx: int = Field(0, ge=0)
    start: float
    end: float
    top: List[ScoredRef] = Field(default_factory=list, description="Ranked proposals, best first")
    matched: Optional[int] = Field(None, description="Movie segment already recorded as the match")

    @model_validator(mode="after")
    def _check_range(self) -> "ClipSegment":
        if not self.start < self.end:
            raise ValueError(f"clip segment {self.seg_id} must satisfy start < end")
        return self


class ProjectFixture(BaseModel):
    movie: Optional[str] = Field(None, description="Movie media path, relative to the project root")
    clip: Optional[str] = Field(None, description="Clip media path, relative to the project root")
    movie_id: Optional[str] = None
    movie_segments: List[MovieSegment] = Field(default_factory=list)
    clip_segments: List[ClipSegment] = Field(default_factory=list)


__all__ = ["MovieSegment", "ScoredRef", "ClipSegment", "ProjectFixture"]
