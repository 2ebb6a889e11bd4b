"""FastAPI mock backend serving a Recmatcher project fixture."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Query
from pydantic import ValidationError

from src.client.schemas import ApplyRequest, OpenProjectRequest, ReviewUpdateRequest

from . import __version__
from .config import DEFAULT_PAGE_SIZE, DEFAULT_SPAN, MAX_PAGE_SIZE, PROJECT_ROOT
from .project import ProjectNotFound, RecmatchProject, UnknownSegment

logger = logging.getLogger("recmatcher.service")

app = FastAPI(title="Recmatcher Mock Backend", version=__version__)

_project: Optional[RecmatchProject] = None
_project_lock = threading.Lock()

T = TypeVar("T")


def load_project(root) -> RecmatchProject:
    global _project
    project = RecmatchProject.open(root)
    with _project_lock:
        _project = project
    return project


def _current() -> RecmatchProject:
    with _project_lock:
        project = _project
    if project is None:
        raise HTTPException(status_code=404, detail="No project is open")
    return project


def _segment_call(fn: Callable[..., T], *args) -> T:
    try:
        return fn(*args)
    except UnknownSegment as error:
        raise HTTPException(status_code=404, detail=f"Unknown segment {error.args[0]}") from error
    except ValueError as error:
        raise HTTPException(status_code=422, detail=str(error)) from error


if PROJECT_ROOT is not None:
    try:
        load_project(PROJECT_ROOT)
    except (ProjectNotFound, ValidationError, ValueError) as error:
        logger.warning("Could not preload project %s: %s", PROJECT_ROOT, error)


@app.get("/health")
def health():
    with _project_lock:
        root = str(_project.root) if _project is not None else None
    return {"status": "ok", "service": "recmatcher", "version": __version__, "project": root}


@app.post("/project/open")
def open_project(payload: OpenProjectRequest):
    try:
        project = load_project(payload.root)
    except ProjectNotFound as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except (ValidationError, ValueError) as error:
        logger.warning("Rejected project fixture under %s: %s", payload.root, error)
        raise HTTPException(status_code=422, detail="Invalid project fixture") from error
    movie, clip = project.media_paths()
    response = {"ok": True}
    if payload.movie or movie:
        response["movie"] = payload.movie or movie
    if payload.clip or clip:
        response["clip"] = payload.clip or clip
    return response


@app.get("/scenes")
def scenes():
    return {"ok": True, "scenes": _current().scenes()}


@app.get("/segments")
def segments(clip_scene_id: int = Query(...)):
    return _current().segments(clip_scene_id)


@app.get("/candidates")
def candidates(
    seg_id: int = Query(...),
    mode: str = Query("top"),
    k: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    return _segment_call(_current().candidates, seg_id, mode, k, offset)


@app.get("/candidates/scene_neighborhood")
def scene_neighborhood(seg_id: int = Query(...), span: int = Query(DEFAULT_SPAN, ge=0)):
    return _segment_call(_current().neighborhood, seg_id, span)


@app.get("/candidates/corridor")
def corridor(seg_id: int = Query(...), span: int = Query(DEFAULT_SPAN, ge=0)):
    return _segment_call(_current().corridor, seg_id, span)


@app.get("/candidates/summary")
def candidate_summary(
    seg_id: int = Query(...),
    span: int = Query(DEFAULT_SPAN, ge=0),
    k: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    return _segment_call(_current().summary, seg_id, span, k, offset)


@app.post("/apply")
def apply(payload: ApplyRequest):
    project = _current()
    try:
        count = _segment_call(project.apply, payload.changes)
    except OSError as error:
        logger.error("Persisting overrides failed: %s", error)
        raise HTTPException(status_code=500, detail="Could not persist overrides") from error
    return {"ok": True, "applied": count}


@app.get("/overrides")
def overrides():
    return _current().overrides_payload()


@app.post("/review/update")
def review_update(payload: ReviewUpdateRequest):
    project = _current()
    try:
        _segment_call(project.update_review, payload.seg_id, payload.status)
    except OSError as error:
        logger.error("Persisting review state failed: %s", error)
        raise HTTPException(status_code=500, detail="Could not persist review state") from error
    return {"ok": True}


@app.get("/review/state")
def review_state():
    return _current().review_payload()


__all__ = ["app", "load_project"]
