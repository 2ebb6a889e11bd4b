"""Per-segment review classification backed by the service."""
from __future__ import annotations

import logging
from typing import Dict, Optional, Union

from .gateway import AsyncGateway, RequestFailed
from .schemas import ReviewStatus
from .segments import SegmentBook

logger = logging.getLogger("recmatcher.review")


class ReviewStateStore:
    """Writes go to the backend first; local rows change only on success."""

    def __init__(self, gateway: AsyncGateway, segments: SegmentBook) -> None:
        self._gateway = gateway
        self._segments = segments
        self._last_error: Optional[RequestFailed] = None

    @property
    def last_error(self) -> Optional[RequestFailed]:
        return self._last_error

    async def set_status(self, seg_id: int, status: Union[ReviewStatus, str]) -> bool:
        value = ReviewStatus(status).value
        if value == ReviewStatus.UNSET.value:
            raise ValueError("Cannot record an unset review status")
        if seg_id not in self._segments:
            raise KeyError(seg_id)
        try:
            await self._gateway.update_review_status(seg_id, value)
        except RequestFailed as error:
            self._last_error = error
            logger.warning("Review update for segment %s failed: %s", seg_id, error)
            return False
        self._segments.set_review(seg_id, value)
        self._last_error = None
        return True

    async def bulk_refresh(self) -> Optional[Dict[int, str]]:
        try:
            states = await self._gateway.review_state()
        except RequestFailed as error:
            self._last_error = error
            logger.warning("Review state refresh failed: %s", error)
            return None
        touched = self._segments.merge_review_states(states)
        logger.debug("Merged %d review states into %d segments", len(states), touched)
        self._last_error = None
        return states


__all__ = ["ReviewStateStore"]
