from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.client.schemas import Candidate, ClipInfo, ReviewStatus, SegmentRow, derive_candidate_id


def test_derived_id_is_deterministic() -> None:
    first = derive_candidate_id(7, 3, 12.345)
    assert first == derive_candidate_id(7, 3, 12.345)
    assert first == derive_candidate_id(7, 3, 12.3449999)
    assert first != derive_candidate_id(7, 3, 12.346)
    assert first != derive_candidate_id(8, 3, 12.345)
    assert first != derive_candidate_id(7, 4, 12.345)
    assert first >> 62 == 1


def test_derived_id_packs_fields() -> None:
    value = derive_candidate_id(2, 5, 1.5)
    assert (value >> 48) & 0x3FFF == 2
    assert (value >> 32) & 0xFFFF == 5
    assert value & 0xFFFFFFFF == 1500


def test_candidate_identity_prefers_backend_id() -> None:
    with_id = Candidate(seg_id=42, scene_id=1, scene_seg_idx=0, start=1.0, end=2.0)
    without_id = Candidate(scene_id=1, scene_seg_idx=0, start=1.0, end=2.0)
    assert with_id.identity == 42
    assert without_id.identity == derive_candidate_id(1, 0, 1.0)
    assert without_id.identity == Candidate(scene_id=1, scene_seg_idx=0, start=1.0, end=3.0).identity


def test_candidate_without_scene_still_has_identity() -> None:
    candidate = Candidate(start=4.0, end=5.0)
    assert candidate.identity == derive_candidate_id(None, None, 4.0)


def test_candidate_payload_omits_missing_fields() -> None:
    payload = Candidate(seg_id=3, start=1.0, end=2.0, score=0.5).to_payload()
    assert payload == {"seg_id": 3, "start": 1.0, "end": 2.0, "score": 0.5}


def test_candidate_is_immutable() -> None:
    candidate = Candidate(seg_id=1, start=0.0, end=1.0)
    with pytest.raises(ValidationError):
        candidate.start = 2.0  # type: ignore[misc]


def test_candidate_rejects_inverted_range() -> None:
    with pytest.raises(ValidationError):
        Candidate(seg_id=300, start=50.0, end=49.0)
    assert Candidate(start=3.0, end=3.0).midpoint == pytest.approx(3.0)


def test_clip_info_rejects_empty_range() -> None:
    with pytest.raises(ValidationError):
        ClipInfo(start=2.0, end=2.0)
    assert ClipInfo(start=1.0, end=3.5).duration == pytest.approx(2.5)


def test_segment_row_decodes_backend_payload() -> None:
    row = SegmentRow.model_validate(
        {
            "seg_id": 9,
            "clip": {"start": 0.0, "end": 1.0, "scene_id": 1},
            "top_matches": [{"seg_id": 100, "start": 5.0, "end": 6.0, "score": 0.9}],
            "matched_orig_seg": None,
            "review_status": "needTrim",
        }
    )
    assert row.id == 9
    assert row.top_matches[0].seg_id == 100
    assert row.review is ReviewStatus.NEED_TRIM


def test_review_status_parse_tolerates_unknown_values() -> None:
    assert ReviewStatus.parse("ok") is ReviewStatus.OK
    assert ReviewStatus.parse(None) is ReviewStatus.UNSET
    assert ReviewStatus.parse("later") is ReviewStatus.UNSET
