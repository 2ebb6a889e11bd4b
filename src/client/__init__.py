"""Review client components for Recmatcher."""

from .cache import CandidateBucketCache, buckets_from_summary, dedup_corridor, display_bucket
from .gateway import AsyncGateway, BackendGateway, RequestFailed
from .player import MediaHandle, MediaPairController, PlaybackRange, SourceState, SyncPolicy
from .reconcile import (
    SegmentAnnotation,
    SpikePolicy,
    annotate_segments,
    effective_match,
    is_bound_candidate,
    is_contiguous,
    preview_ranges,
    same_candidate,
)
from .review import ReviewStateStore
from .schemas import Candidate, ClipInfo, ReviewStatus, Scene, SegmentRow, derive_candidate_id
from .segments import SegmentBook
from .store import AppStore, PreviewPlan, SessionState, local_media_access, parse_deep_link

__all__ = [
    "CandidateBucketCache",
    "buckets_from_summary",
    "dedup_corridor",
    "display_bucket",
    "AsyncGateway",
    "BackendGateway",
    "RequestFailed",
    "MediaHandle",
    "MediaPairController",
    "PlaybackRange",
    "SourceState",
    "SyncPolicy",
    "SegmentAnnotation",
    "SpikePolicy",
    "annotate_segments",
    "effective_match",
    "is_bound_candidate",
    "is_contiguous",
    "preview_ranges",
    "same_candidate",
    "ReviewStateStore",
    "Candidate",
    "ClipInfo",
    "ReviewStatus",
    "Scene",
    "SegmentRow",
    "derive_candidate_id",
    "SegmentBook",
    "AppStore",
    "PreviewPlan",
    "SessionState",
    "local_media_access",
    "parse_deep_link",
]
