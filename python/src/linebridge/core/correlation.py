"""
Correlation table matching worker replies to pending requests.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from .errors import DuplicateIdError, OrphanReplyWarning
from .logging import StructuredLogger, LogEvent
from .metrics import Metrics


class CorrelationTable:
    """
    Pending requests: request_id -> asyncio.Future.

    Each registered future is completed at most once. Entries are removed
    before their future is completed, so a second reply with the same id is
    an orphan rather than a second completion.

    All methods run on the event loop thread and take no lock.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[Metrics] = None,
    ):
        self._pending: Dict[str, asyncio.Future] = {}
        self._logger = logger or StructuredLogger()
        self._metrics = metrics

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def register(self, request_id: str, future: asyncio.Future):
        """
        Register the completion handle for a request.

        Raises:
            DuplicateIdError: If the id already has a pending entry
        """
        if request_id in self._pending:
            self._logger.warn(
                LogEvent.DUPLICATE_ID,
                f"Request {request_id} is already pending",
                request_id=request_id,
                error_type=DuplicateIdError.__name__,
            )
            raise DuplicateIdError(f"Request {request_id} is already pending")
        self._pending[request_id] = future

    def resolve(self, request_id: str, payload: Any) -> bool:
        """
        Complete the pending request with the reply payload.

        Returns False when no caller received the reply (orphan or cancelled).
        """
        future = self._pending.pop(request_id, None)

        if future is None:
            warning = OrphanReplyWarning(f"No pending request for reply {request_id}")
            self._logger.warn(
                LogEvent.ORPHAN_REPLY,
                str(warning),
                request_id=request_id,
                error_type=type(warning).__name__,
            )
            if self._metrics:
                self._metrics.record_orphan_reply()
            return False

        if future.done():
            # Caller went away (cancelled) before the reply arrived
            self._logger.debug(
                LogEvent.ORPHAN_REPLY,
                f"Reply {request_id} arrived after its caller gave up",
                request_id=request_id,
            )
            return False

        future.set_result(payload)
        return True

    def fail(self, request_id: str, error: BaseException) -> bool:
        """Complete one pending request with a failure."""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def discard(self, request_id: str) -> bool:
        """Remove a pending entry without completing it."""
        return self._pending.pop(request_id, None) is not None

    def fail_all(self, error: BaseException) -> int:
        """
        Complete every pending request with a copy of error and clear the table.

        Returns the number of callers that received the failure.
        """
        pending = list(self._pending.items())
        self._pending.clear()

        failed = 0
        for request_id, future in pending:
            if not future.done():
                future.set_exception(copy.copy(error))
                failed += 1
        return failed
