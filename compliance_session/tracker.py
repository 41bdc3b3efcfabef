"""
Operation Tracker
=================

Concurrency guards and loading/error flags for the session store.

Regions:
- Per-term: one exclusive region per term_id shared by ask-question, review,
  confirm and expert feedback. A second request for a busy term is rejected.
- Session-scoped: one slot per SessionOperation. UPLOAD and REHYDRATE follow
  "last request wins" (re-entry supersedes the earlier attempt); the other
  slots reject re-entry.

Every acquisition returns a token. A token stops being current when its slot
is superseded or the tracker is reset; results carrying a stale token must be
discarded by the caller.
"""

import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Generator, Optional

from .errors import ConcurrentOperationError

logger = logging.getLogger(__name__)


class TermOperation(str, Enum):
    ASK_QUESTION = "ask_question"
    REVIEW = "review"
    CONFIRM = "confirm"
    EXPERT_FEEDBACK = "expert_feedback"


class SessionOperation(str, Enum):
    UPLOAD = "upload"
    REHYDRATE = "rehydrate"
    GENERATE_MODIFIED = "generate_modified"
    GENERATE_MARKED = "generate_marked"
    GENERAL_QUESTION = "general_question"


SUPERSEDING_OPERATIONS = frozenset({SessionOperation.UPLOAD, SessionOperation.REHYDRATE})

# Error scope keys (per-term errors use the term_id itself)
SESSION_ERROR = "session"
UPLOAD_ERROR = "upload"


@dataclass(frozen=True)
class _TermHold:
    operation: TermOperation
    token: int


class OperationTracker:
    """
    Guards and flags for in-flight operations.

    Usage:
        tracker = OperationTracker()
        with tracker.term_guard("t1", TermOperation.REVIEW) as token:
            response = await client.review_modification(...)
            if tracker.is_current_term("t1", token):
                ...apply...
    """

    def __init__(self, listener: Optional[Callable[[], None]] = None):
        self._term_holds: Dict[str, _TermHold] = {}
        self._session_holds: Dict[SessionOperation, int] = {}
        self._errors: Dict[str, str] = {}
        self._preview_loading: Dict[str, bool] = {}
        self._tokens = itertools.count(1)
        self._listener = listener

    def set_listener(self, listener: Optional[Callable[[], None]]):
        self._listener = listener

    def _changed(self):
        if self._listener is not None:
            self._listener()

    # =========================================================================
    # Guards
    # =========================================================================

    @contextmanager
    def term_guard(self, term_id: str, operation: TermOperation) -> Generator[int, None, None]:
        """Exclusive region for one term. Raises ConcurrentOperationError if held."""
        hold = self._term_holds.get(term_id)
        if hold is not None:
            raise ConcurrentOperationError(
                f"Term {term_id} is busy ({hold.operation.value} in progress)"
            )

        token = next(self._tokens)
        self._term_holds[term_id] = _TermHold(operation, token)
        self._changed()
        try:
            yield token
        finally:
            if self.is_current_term(term_id, token):
                del self._term_holds[term_id]
                self._changed()

    @contextmanager
    def session_guard(self, operation: SessionOperation) -> Generator[int, None, None]:
        """Session-scoped slot. Superseding slots never raise."""
        if operation in self._session_holds:
            if operation not in SUPERSEDING_OPERATIONS:
                raise ConcurrentOperationError(f"{operation.value} is already in progress")
            logger.info(f"Superseding in-flight {operation.value}")

        token = next(self._tokens)
        self._session_holds[operation] = token
        self._changed()
        try:
            yield token
        finally:
            if self.is_current(operation, token):
                del self._session_holds[operation]
                self._changed()

    def is_current(self, operation: SessionOperation, token: int) -> bool:
        return self._session_holds.get(operation) == token

    def is_current_term(self, term_id: str, token: int) -> bool:
        hold = self._term_holds.get(term_id)
        return hold is not None and hold.token == token

    # =========================================================================
    # Flags
    # =========================================================================

    def term_operation(self, term_id: str) -> Optional[TermOperation]:
        hold = self._term_holds.get(term_id)
        return hold.operation if hold else None

    def is_term_busy(self, term_id: str) -> bool:
        return term_id in self._term_holds

    def is_awaiting_review(self, term_id: str) -> bool:
        return self.term_operation(term_id) == TermOperation.REVIEW

    def is_active(self, operation: SessionOperation) -> bool:
        return operation in self._session_holds

    @property
    def is_uploading(self) -> bool:
        return self.is_active(SessionOperation.UPLOAD)

    @property
    def is_fetching_session(self) -> bool:
        return self.is_active(SessionOperation.REHYDRATE)

    @property
    def is_generating_modified(self) -> bool:
        return self.is_active(SessionOperation.GENERATE_MODIFIED)

    @property
    def is_generating_marked(self) -> bool:
        return self.is_active(SessionOperation.GENERATE_MARKED)

    @property
    def is_processing_general_question(self) -> bool:
        return self.is_active(SessionOperation.GENERAL_QUESTION)

    def busy_terms(self) -> Dict[str, str]:
        return {term_id: hold.operation.value for term_id, hold in self._term_holds.items()}

    def any_active(self) -> bool:
        return bool(self._term_holds or self._session_holds or any(self._preview_loading.values()))

    # =========================================================================
    # Errors
    # =========================================================================

    def set_error(self, key: str, message: str):
        self._errors[key] = message
        self._changed()

    def clear_error(self, key: str):
        if self._errors.pop(key, None) is not None:
            self._changed()

    def error(self, key: str) -> Optional[str]:
        return self._errors.get(key)

    def errors(self) -> Dict[str, str]:
        return dict(self._errors)

    # =========================================================================
    # Preview loading
    # =========================================================================

    def set_preview_loading(self, key: str, is_loading: bool):
        self._preview_loading[key] = is_loading
        self._changed()

    def is_preview_loading(self, key: str) -> bool:
        return self._preview_loading.get(key, False)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def snapshot(self) -> Dict[str, object]:
        """Plain-dict view for UI loading indicators"""
        return {
            "is_uploading": self.is_uploading,
            "is_fetching_session": self.is_fetching_session,
            "is_generating_modified": self.is_generating_modified,
            "is_generating_marked": self.is_generating_marked,
            "is_processing_general_question": self.is_processing_general_question,
            "busy_terms": self.busy_terms(),
            "preview_loading": dict(self._preview_loading),
            "errors": self.errors(),
        }

    def release_session_scoped(self):
        """
        Drop state tied to the loaded session when another one replaces it.

        Term holds, exclusive session slots and per-term errors go; upload and
        rehydrate holds plus the session/upload errors stay.
        """
        self._term_holds.clear()
        for operation in list(self._session_holds):
            if operation not in SUPERSEDING_OPERATIONS:
                del self._session_holds[operation]
        self._errors = {
            key: message for key, message in self._errors.items()
            if key in (SESSION_ERROR, UPLOAD_ERROR)
        }
        self._changed()

    def reset(self):
        """Drop every hold, error and preview flag; outstanding tokens become stale."""
        self._term_holds.clear()
        self._session_holds.clear()
        self._errors.clear()
        self._preview_loading.clear()
        self._changed()
