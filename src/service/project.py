"""Project fixture loading, candidate lookup and JSON persistence for the mock backend."""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from src.client.schemas import ApplyChange, ReviewStatus

from .config import FIXTURE_NAME, OVERRIDES_NAME, REVIEW_NAME
from .schemas import ClipSegment, MovieSegment, ProjectFixture

logger = logging.getLogger("recmatcher.service")

CANDIDATE_MODES = ("top", "scene", "all")


class ProjectNotFound(FileNotFoundError):
    pass


class UnknownSegment(KeyError):
    pass


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _load_json(path: Path) -> Dict[str, object]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as error:
        logger.warning("Ignoring unreadable state file %s: %s", path, error)
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, payload: Dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _page(items: Sequence[Dict[str, object]], k: int, offset: int) -> Tuple[int, List[Dict[str, object]]]:
    return len(items), list(items[offset : offset + k])


class RecmatchProject:
    """In-memory view of one project root plus its persisted overrides and review state."""

    def __init__(self, root: Path, fixture: ProjectFixture) -> None:
        self.root = root
        self.fixture = fixture
        self.overrides_path = root / OVERRIDES_NAME
        self.review_path = root / REVIEW_NAME
        self._lock = threading.Lock()

        self._movie: Dict[int, MovieSegment] = {seg.seg_id: seg for seg in fixture.movie_segments}
        self._movie_order: List[MovieSegment] = sorted(fixture.movie_segments, key=lambda seg: (seg.start, seg.seg_id))
        self._movie_position = {seg.seg_id: index for index, seg in enumerate(self._movie_order)}
        self._movie_scenes: List[int] = sorted({seg.scene_id for seg in fixture.movie_segments})

        self._clips: Dict[int, ClipSegment] = {seg.seg_id: seg for seg in fixture.clip_segments}
        self._clip_order: List[ClipSegment] = sorted(
            fixture.clip_segments, key=lambda seg: (seg.scene_id, seg.scene_seg_idx, seg.start)
        )
        self._clip_position = {seg.seg_id: index for index, seg in enumerate(self._clip_order)}

        self._overrides: Dict[str, Dict[str, object]] = {
            key: value for key, value in _load_json(self.overrides_path).items() if isinstance(value, dict)
        }
        review = _load_json(self.review_path).get("segs", {})
        self._review: Dict[str, Dict[str, object]] = review if isinstance(review, dict) else {}

    @classmethod
    def open(cls, root: Path | str) -> "RecmatchProject":
        resolved = Path(root).expanduser().resolve()
        fixture_path = resolved / FIXTURE_NAME
        if not fixture_path.is_file():
            raise ProjectNotFound(f"No {FIXTURE_NAME} under {resolved}")
        with fixture_path.open("r", encoding="utf-8") as handle:
            fixture = ProjectFixture.model_validate(json.load(handle))
        logger.info(
            "Loaded project %s: %d clip segments, %d movie segments",
            resolved,
            len(fixture.clip_segments),
            len(fixture.movie_segments),
        )
        return cls(resolved, fixture)

    # ------------------------------------------------------------------
    def media_paths(self) -> Tuple[Optional[str], Optional[str]]:
        def resolve(value: Optional[str]) -> Optional[str]:
            if not value:
                return None
            path = Path(value).expanduser()
            return str(path if path.is_absolute() else self.root / path)

        return resolve(self.fixture.movie), resolve(self.fixture.clip)

    def _candidate(self, movie_seg_id: int, score: Optional[float] = None, source: Optional[str] = None) -> Dict[str, object]:
        seg = self._movie[movie_seg_id]
        payload: Dict[str, object] = {
            "seg_id": seg.seg_id,
            "scene_seg_idx": seg.scene_seg_idx,
            "start": seg.start,
            "end": seg.end,
            "scene_id": seg.scene_id,
        }
        if score is not None:
            payload["score"] = score
        if self.fixture.movie_id:
            payload["movie_id"] = self.fixture.movie_id
        if seg.shot_id is not None:
            payload["shot_id"] = seg.shot_id
        if source:
            payload["source"] = source
        return payload

    def _clip(self, seg_id: int) -> ClipSegment:
        clip = self._clips.get(seg_id)
        if clip is None:
            raise UnknownSegment(seg_id)
        return clip

    def _bound(self, clip: ClipSegment) -> Optional[Dict[str, object]]:
        override = self._overrides.get(str(clip.seg_id))
        if override is not None:
            return override
        if clip.matched is not None and clip.matched in self._movie:
            return self._candidate(clip.matched, source="fixture")
        return None

    def _anchor(self, clip: ClipSegment) -> Optional[int]:
        bound = self._bound(clip)
        if bound is not None and bound.get("seg_id") in self._movie:
            return int(bound["seg_id"])
        for ref in clip.top:
            if ref.seg_id in self._movie:
                return ref.seg_id
        return None

    def _scored(self, clip: ClipSegment) -> List[Dict[str, object]]:
        return [self._candidate(ref.seg_id, ref.score, "top") for ref in clip.top if ref.seg_id in self._movie]

    def _window(self, center: int, before: int, after: int) -> Iterable[MovieSegment]:
        lo = max(0, center - before)
        hi = min(len(self._movie_order), center + after + 1)
        return self._movie_order[lo:hi]

    # ------------------------------------------------------------------
    def scenes(self) -> List[Dict[str, int]]:
        return [{"clip_scene_id": scene_id} for scene_id in sorted({seg.scene_id for seg in self._clip_order})]

    def segments(self, scene_id: int) -> List[Dict[str, object]]:
        rows: List[Dict[str, object]] = []
        for clip in self._clip_order:
            if clip.scene_id != scene_id:
                continue
            key = str(clip.seg_id)
            review = self._review.get(key, {})
            override = key in self._overrides
            bound = self._bound(clip)
            rows.append(
                {
                    "seg_id": clip.seg_id,
                    "clip": {
                        "start": clip.start,
                        "end": clip.end,
                        "scene_id": clip.scene_id,
                        "scene_seg_idx": clip.scene_seg_idx,
                    },
                    "top_matches": self._scored(clip),
                    "matched_orig_seg": bound,
                    "matched_source": ("override" if override else "fixture") if bound is not None else None,
                    "is_override": override,
                    "review_status": review.get("status"),
                    "review_stale": bool(review.get("stale", False)),
                }
            )
        return rows

    def same_scene(self, seg_id: int) -> List[Dict[str, object]]:
        anchor = self._anchor(self._clip(seg_id))
        if anchor is None:
            return []
        scene_id = self._movie[anchor].scene_id
        return [self._candidate(seg.seg_id, source="scene") for seg in self._movie_order if seg.scene_id == scene_id]

    def ranked_all(self, seg_id: int) -> List[Dict[str, object]]:
        clip = self._clip(seg_id)
        items = self._scored(clip)
        seen = {item["seg_id"] for item in items}
        anchor = self._anchor(clip)
        origin = self._movie[anchor].start if anchor is not None else clip.start
        rest = sorted(
            (seg for seg in self._movie_order if seg.seg_id not in seen),
            key=lambda seg: (abs(seg.start - origin), seg.seg_id),
        )
        items.extend(self._candidate(seg.seg_id, source="all") for seg in rest)
        return items

    def candidates(self, seg_id: int, mode: str, k: int, offset: int) -> Dict[str, object]:
        if mode not in CANDIDATE_MODES:
            raise ValueError(f"Unknown candidate mode {mode!r}")
        clip = self._clip(seg_id)
        if mode == "top":
            items = self._scored(clip)
        elif mode == "scene":
            items = self.same_scene(seg_id)
        else:
            items = self.ranked_all(seg_id)
        total, page = _page(items, k, offset)
        return {"ok": True, "seg_id": seg_id, "mode": mode, "total": total, "items": page}

    def neighborhood(self, seg_id: int, span: int) -> Dict[str, object]:
        anchor = self._anchor(self._clip(seg_id))
        if anchor is None:
            return {"ok": True, "seg_id": seg_id, "anchor_scene_id": None, "scene_ids": [], "items": []}
        anchor_scene = self._movie[anchor].scene_id
        index = self._movie_scenes.index(anchor_scene)
        scene_ids = self._movie_scenes[max(0, index - span) : index + span + 1]
        items = [
            self._candidate(seg.seg_id, source="neighborhood") for seg in self._movie_order if seg.scene_id in scene_ids
        ]
        return {"ok": True, "seg_id": seg_id, "anchor_scene_id": anchor_scene, "scene_ids": scene_ids, "items": items}

    def _corridor_parts(self, seg_id: int, span: int) -> Dict[str, object]:
        clip = self._clip(seg_id)
        position = self._clip_position[seg_id]
        prev_anchor = self._anchor(self._clip_order[position - 1]) if position > 0 else None
        next_anchor = self._anchor(self._clip_order[position + 1]) if position + 1 < len(self._clip_order) else None

        prev_items: List[Dict[str, object]] = []
        if prev_anchor is not None:
            for seg in self._window(self._movie_position[prev_anchor] + 1, 0, span - 1):
                prev_items.append(self._candidate(seg.seg_id, source="corridor"))
        next_items: List[Dict[str, object]] = []
        if next_anchor is not None:
            for seg in self._window(self._movie_position[next_anchor] - 1, span - 1, 0):
                next_items.append(self._candidate(seg.seg_id, source="corridor"))
        current: List[Dict[str, object]] = []
        anchor = self._anchor(clip)
        if anchor is not None:
            for seg in self._window(self._movie_position[anchor], span, span):
                current.append(self._candidate(seg.seg_id, source="corridor"))
        return {
            "anchors": {"prev": prev_anchor, "next": next_anchor},
            "prev": prev_items,
            "current": current,
            "next": next_items,
        }

    def corridor(self, seg_id: int, span: int) -> Dict[str, object]:
        parts = self._corridor_parts(seg_id, span)
        return {
            "ok": True,
            "seg_id": seg_id,
            "anchors": parts["anchors"],
            "span": span,
            "prev": parts["prev"],
            "next": parts["next"],
        }

    def summary(self, seg_id: int, span: int, k: int, offset: int) -> Dict[str, object]:
        clip = self._clip(seg_id)
        top_total, top_items = _page(self._scored(clip), k, offset)
        scene_total, scene_items = _page(self.same_scene(seg_id), k, offset)
        all_total, all_items = _page(self.ranked_all(seg_id), k, offset)
        parts = self._corridor_parts(seg_id, span)
        return {
            "ok": True,
            "seg_id": seg_id,
            "top": {"total": top_total, "items": top_items},
            "scene": {"total": scene_total, "items": scene_items},
            "all": {"total": all_total, "items": all_items},
            "corridor": {"span": span, "prev": parts["prev"], "current": parts["current"], "next": parts["next"]},
            "neighborhood": {"span": span, "items": self.neighborhood(seg_id, span)["items"]},
        }

    # ------------------------------------------------------------------
    def apply(self, changes: Sequence[ApplyChange]) -> int:
        for change in changes:
            self._clip(change.seg_id)
        with self._lock:
            stale = 0
            for change in changes:
                key = str(change.seg_id)
                chosen = change.chosen.to_payload()
                previous = self._bound(self._clips[change.seg_id])
                changed = previous is None or (
                    previous.get("seg_id"),
                    previous.get("start"),
                    previous.get("end"),
                ) != (chosen.get("seg_id"), chosen.get("start"), chosen.get("end"))
                self._overrides[key] = chosen
                review = self._review.get(key)
                if changed and review and review.get("status"):
                    review["stale"] = True
                    stale += 1
            _write_json(self.overrides_path, dict(self._overrides))
            if stale:
                _write_json(self.review_path, {"segs": self._review})
        logger.info("Applied %d override(s); %d review(s) marked stale", len(changes), stale)
        return len(changes)

    def overrides_payload(self) -> Dict[str, object]:
        with self._lock:
            data = dict(self._overrides)
        return {"path": str(self.overrides_path), "count": len(data), "data": data}

    def update_review(self, seg_id: int, status: str) -> None:
        if status not in {item.value for item in ReviewStatus if item is not ReviewStatus.UNSET}:
            raise ValueError(f"Unknown review status {status!r}")
        self._clip(seg_id)
        with self._lock:
            self._review[str(seg_id)] = {"status": status, "stale": False, "updated_at": _utcnow()}
            _write_json(self.review_path, {"segs": self._review})
        logger.info("Review status of segment %s set to %s", seg_id, status)

    def review_payload(self) -> Dict[str, object]:
        with self._lock:
            segs = {key: dict(value) for key, value in self._review.items()}
        return {"ok": True, "segs": segs}


__all__ = ["CANDIDATE_MODES", "ProjectNotFound", "UnknownSegment", "RecmatchProject"]
