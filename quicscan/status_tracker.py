from __future__ import annotations

import logging
from typing import Dict, Optional

from .config import STATUS_PRIORITY
from .models import PriorityStatusState

logger = logging.getLogger(__name__)


def _is_redirect(status: int) -> bool:
    return 300 <= status < 400


def _is_error(status: int) -> bool:
    return 400 <= status < 600


class StatusPriorityTracker:
    """Tracks the target document's first status and its most severe ranked status.

    first_main_document_status is sticky: once set it only moves to 200, or
    from a redirect to an error. highest_priority_status only moves up the
    rank table, so observing any ranked status proves the origin answered."""

    def __init__(self, priority: Optional[Dict[int, int]] = None) -> None:
        self._priority = dict(priority or STATUS_PRIORITY)
        self._first: Optional[int] = None
        self._highest: Optional[int] = None

    def observe(self, status: int) -> None:
        status = int(status)
        self._observe_first(status)
        self._observe_priority(status)

    def _observe_first(self, status: int) -> None:
        current = self._first
        if current is None:
            self._first = status
            logger.debug("First main document status: %s", status)
            return
        if current == 200:
            return
        if status == 200 or (_is_error(status) and _is_redirect(current)):
            logger.debug("First main document status upgraded: %s -> %s", current, status)
            self._first = status

    def _observe_priority(self, status: int) -> None:
        rank = self._priority.get(status)
        if not rank:
            return
        current_rank = self._priority.get(self._highest, 0) if self._highest is not None else 0
        if rank > current_rank:
            self._highest = status
            logger.info("Priority status updated: %s (rank %s)", status, rank)

    @property
    def first_main_document_status(self) -> Optional[int]:
        return self._first

    @property
    def highest_priority_status(self) -> Optional[int]:
        return self._highest

    @property
    def has_ranked_status(self) -> bool:
        return self._highest is not None

    def reset(self) -> None:
        self._first = None
        self._highest = None

    def snapshot(self) -> PriorityStatusState:
        return PriorityStatusState(
            first_main_document_status=self._first,
            highest_priority_status=self._highest,
        )
