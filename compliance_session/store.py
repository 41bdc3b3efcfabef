"""
Session Store
=============

Orchestrator that owns the canonical Session and Term collection.

Every public operation:
1. Validates its inputs (ValidationError, no network call)
2. Enters an OperationTracker guard (ConcurrentOperationError when held)
3. Awaits the AnalysisClient
4. Re-checks that its guard token and session are still current
   (StaleOperationError otherwise, nothing applied)
5. Swaps in new terms + stats in one step and notifies subscribers

Domain failures are returned as OperationResult, never raised.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional, Tuple

from .client import AnalysisClient, HttpAnalysisClient
from .config import Settings, get_settings
from .errors import (
    ConcurrentOperationError,
    EngineError,
    OperationResult,
    ServerError,
    StaleOperationError,
    ValidationError,
)
from .models import (
    ComplianceStats,
    ContractFile,
    MarkedContractInfo,
    ModifiedContractInfo,
    PdfPreviewInfo,
    RemoteFileInfo,
    Session,
    StoreSnapshot,
    Term,
    artifact_filename,
    utc_timestamp,
)
from .persistence import MemoryStorage, PersistenceAdapter, RedisStorage, SqlStorage, TieredStorage
from .reconciler import compute_stats
from .schemas import ExpertFeedback, ExpertFeedbackPayload, PreviewKind, UserRole
from .tracker import (
    SESSION_ERROR,
    UPLOAD_ERROR,
    OperationTracker,
    SessionOperation,
    TermOperation,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[StoreSnapshot], None]


class SessionStore:
    """
    Single owner of session state.

    Usage:
        store = SessionStore(client, persistence)
        await store.init()
        unsubscribe = store.subscribe(render)
        result = await store.review_modification("t1", "new wording")
        if not result.success:
            show(result.message)
        await store.dispose()
    """

    def __init__(
        self,
        client: AnalysisClient,
        persistence: Optional[PersistenceAdapter] = None,
        tracker: Optional[OperationTracker] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.persistence = persistence if persistence is not None else MemoryStorage()
        self.tracker = tracker or OperationTracker()

        self._session: Optional[Session] = None
        self._terms: Tuple[Term, ...] = ()
        self._stats = ComplianceStats()
        self._role: UserRole = self.settings.default_user_role
        self._upload_progress = 0
        self._subscribers: List[Subscriber] = []
        self._disposed = False

        self.tracker.set_listener(self._notify)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> OperationResult:
        """
        Load the role preference and rehydrate a persisted session, if any.

        Also revives a disposed store. The value is the loaded Session, or
        None when nothing was persisted.
        """
        if self._disposed:
            self._disposed = False
            self.tracker.set_listener(self._notify)
        self._role = self._load_role()
        if self._session is not None:
            self._notify()
            return OperationResult.ok(self._session)
        stored_session_id = self.persistence.get(self.settings.session_id_key)
        if stored_session_id:
            logger.info(f"Rehydrating persisted session {stored_session_id}")
            return await self.rehydrate(stored_session_id)
        self._notify()
        return OperationResult.ok(None)

    async def dispose(self):
        """
        Detach subscribers, drop in-memory state and stop accepting operations
        until the next init(). The persisted id is kept.
        """
        self._subscribers.clear()
        self.tracker.set_listener(None)
        self.tracker.reset()
        self._session = None
        self._terms = ()
        self._stats = ComplianceStats()
        self._upload_progress = 0
        self._disposed = True

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    @property
    def terms(self) -> Tuple[Term, ...]:
        return self._terms

    @property
    def stats(self) -> ComplianceStats:
        return self._stats

    @property
    def role(self) -> UserRole:
        return self._role

    @property
    def upload_progress(self) -> int:
        return self._upload_progress

    @property
    def error(self) -> Optional[str]:
        return self.tracker.error(SESSION_ERROR)

    @property
    def upload_error(self) -> Optional[str]:
        return self.tracker.error(UPLOAD_ERROR)

    def term_error(self, term_id: str) -> Optional[str]:
        return self.tracker.error(term_id)

    def get_term(self, term_id: str) -> Optional[Term]:
        for term in self._terms:
            if term.term_id == term_id:
                return term
        return None

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            session=self._session,
            terms=self._terms,
            stats=self._stats,
            role=self._role.value,
            upload_progress=self._upload_progress,
            flags=self.tracker.snapshot(),
        )

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self):
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Session store subscriber failed")

    # =========================================================================
    # State mutation (the only place session/terms/stats change)
    # =========================================================================

    def _set_state(self, session: Optional[Session], terms: Tuple[Term, ...]):
        self._session = session
        self._terms = terms
        self._stats = compute_stats(terms)
        self._notify()

    def _replace_term(self, term_id: str, **changes) -> Term:
        updated = None
        terms = []
        for term in self._terms:
            if term.term_id == term_id:
                updated = replace(term, **changes)
                terms.append(updated)
            else:
                terms.append(term)
        self._set_state(self._session, tuple(terms))
        return updated

    def _set_upload_progress(self, value: int):
        self._upload_progress = value
        self._notify()

    def _clear_state(self):
        self._upload_progress = 0
        self._session = None
        self._terms = ()
        self._stats = ComplianceStats()
        self.tracker.reset()
        self.persistence.remove(self.settings.session_id_key)
        self._notify()

    def clear_session(self):
        """Reset session, terms, stats, tracker flags and the persisted id. Idempotent."""
        self._clear_state()
        logger.debug("Session cleared")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_session(self) -> Optional[EngineError]:
        if self._disposed:
            return ValidationError("Session store has been disposed")
        if self._session is None:
            return ValidationError("No active session. Please upload a contract first.")
        return None

    def _require_term(self, term_id: str) -> Optional[EngineError]:
        error = self._require_session()
        if error:
            return error
        if not term_id or self.get_term(term_id) is None:
            return ValidationError(f"Term {term_id} not found")
        return None

    def _record_failure(self, error: EngineError, scope: Optional[str] = None) -> OperationResult:
        self.tracker.set_error(SESSION_ERROR, error.message)
        if scope:
            self.tracker.set_error(scope, error.message)
        return OperationResult.failed(error)

    @staticmethod
    def _stale(description: str) -> OperationResult:
        logger.warning(f"Discarding stale result: {description}")
        return OperationResult.failed(StaleOperationError(f"Result of {description} was superseded"))

    def _term_is_current(self, term_id: str, token: int, session_id: str) -> bool:
        return (
            self.tracker.is_current_term(term_id, token)
            and self.session_id == session_id
            and self.get_term(term_id) is not None
        )

    async def _term_operation(
        self,
        term_id: str,
        operation: TermOperation,
        call: Callable[[str, Term], Awaitable],
        apply: Callable[[object], OperationResult],
    ) -> OperationResult:
        """Run one guarded remote call for a term and apply its response."""
        error = self._require_term(term_id)
        if error:
            return OperationResult.failed(error)

        session_id = self._session.session_id
        term = self.get_term(term_id)
        description = f"{operation.value} on {term_id}"

        try:
            with self.tracker.term_guard(term_id, operation) as token:
                self.tracker.clear_error(term_id)
                try:
                    response = await call(session_id, term)
                except EngineError as e:
                    if not self._term_is_current(term_id, token, session_id):
                        return self._stale(description)
                    logger.error(f"{description} failed: {e.message}")
                    return self._record_failure(e, term_id)

                if not self._term_is_current(term_id, token, session_id):
                    return self._stale(description)
                result = apply(response)
                if not result.success:
                    return self._record_failure(result.error, term_id)
                return result
        except ConcurrentOperationError as e:
            logger.warning(f"Rejected {description}: {e.message}")
            return OperationResult.failed(e)

    async def _session_operation(
        self,
        operation: SessionOperation,
        call: Callable[[str], Awaitable],
        apply: Callable[[object], OperationResult],
    ) -> OperationResult:
        """Run one guarded session-scoped remote call and apply its response."""
        error = self._require_session()
        if error:
            return OperationResult.failed(error)

        session_id = self._session.session_id

        try:
            with self.tracker.session_guard(operation) as token:
                self.tracker.clear_error(SESSION_ERROR)
                try:
                    response = await call(session_id)
                except EngineError as e:
                    if not self.tracker.is_current(operation, token) or self.session_id != session_id:
                        return self._stale(operation.value)
                    logger.error(f"{operation.value} failed: {e.message}")
                    return self._record_failure(e)

                if not self.tracker.is_current(operation, token) or self.session_id != session_id:
                    return self._stale(operation.value)
                result = apply(response)
                if not result.success:
                    return self._record_failure(result.error)
                return result
        except ConcurrentOperationError as e:
            logger.warning(f"Rejected {operation.value}: {e.message}")
            return OperationResult.failed(e)

    # =========================================================================
    # Upload / rehydrate
    # =========================================================================

    async def upload_and_analyze(self, file: ContractFile) -> OperationResult:
        """
        Upload a contract, then load the resulting session.

        Any current session is discarded first. A newer upload supersedes
        this one; a superseded attempt returns StaleOperationError and never
        touches state.
        """
        if self._disposed:
            return OperationResult.failed(ValidationError("Session store has been disposed"))
        if not file.filename or not file.content:
            return OperationResult.failed(ValidationError("Please choose a non-empty contract file"))

        self.clear_session()

        with self.tracker.session_guard(SessionOperation.UPLOAD) as token:
            def on_progress(value: int):
                if self.tracker.is_current(SessionOperation.UPLOAD, token):
                    self._set_upload_progress(value)

            try:
                self._set_upload_progress(0)
                try:
                    response = await self.client.upload(file, on_progress)
                except EngineError as e:
                    if not self.tracker.is_current(SessionOperation.UPLOAD, token):
                        return self._stale(f"upload of {file.filename}")
                    logger.error(f"Upload of {file.filename} failed: {e.message}")
                    return self._record_failure(e, UPLOAD_ERROR)

                if not self.tracker.is_current(SessionOperation.UPLOAD, token):
                    return self._stale(f"upload of {file.filename}")

                logger.info(f"Contract {file.filename} analyzed as session {response.session_id}: {response.message}")
                result = await self.rehydrate(response.session_id)
                if not result.success and result.error_kind != StaleOperationError.kind:
                    self.tracker.set_error(UPLOAD_ERROR, result.message)
                return result
            finally:
                if self.tracker.is_current(SessionOperation.UPLOAD, token):
                    self._set_upload_progress(0)

    async def rehydrate(self, session_id: str) -> OperationResult:
        """
        Fetch session metadata and terms in parallel and replace state.

        Any fetch failure clears the store entirely; no partial session is kept.
        """
        if self._disposed:
            return OperationResult.failed(ValidationError("Session store has been disposed"))
        if not session_id:
            return OperationResult.failed(ValidationError("Session id is required"))

        with self.tracker.session_guard(SessionOperation.REHYDRATE) as token:
            self.tracker.clear_error(SESSION_ERROR)
            details, records = await asyncio.gather(
                self.client.get_session_details(session_id),
                self.client.get_terms(session_id),
                return_exceptions=True,
            )

            if not self.tracker.is_current(SessionOperation.REHYDRATE, token):
                return self._stale(f"rehydrate of {session_id}")

            failure = None
            for outcome in (details, records):
                if isinstance(outcome, EngineError):
                    failure = outcome
                    break
                if isinstance(outcome, Exception):
                    logger.error(f"Unexpected client failure loading session {session_id}", exc_info=outcome)
                    failure = ServerError(str(outcome) or type(outcome).__name__)
                    break
                if isinstance(outcome, BaseException):
                    raise outcome

            if failure is None:
                terms = tuple(Term.from_record(record) for record in records)
                term_ids = [t.term_id for t in terms]
                if len(set(term_ids)) != len(term_ids):
                    failure = ServerError(f"Session {session_id} returned duplicate term ids")

            if failure is not None:
                logger.error(f"Failed to load session {session_id}: {failure.message}")
                self._clear_state()
                return self._record_failure(failure)

            if self.session_id is not None and self.session_id != details.session_id:
                logger.info(f"Releasing guards of session {self.session_id}")
                self.tracker.release_session_scoped()
            self._set_state(Session.from_record(details), terms)
            self.persistence.set(self.settings.session_id_key, session_id)
            logger.info(f"Loaded session {session_id} with {len(terms)} terms")
            return OperationResult.ok(self._session)

    # =========================================================================
    # Term operations
    # =========================================================================

    async def ask_question(self, question: str, term_id: Optional[str] = None) -> OperationResult:
        """
        Ask about one term (answer stored on the term) or about the whole
        contract (answer only returned).
        """
        if not question or not question.strip():
            return OperationResult.failed(ValidationError("Question must not be empty"))

        if term_id is None:
            return await self._session_operation(
                SessionOperation.GENERAL_QUESTION,
                lambda sid: self.client.ask_question(sid, question),
                OperationResult.ok,
            )

        def apply(answer) -> OperationResult:
            self._replace_term(term_id, last_qa_answer=answer)
            return OperationResult.ok(answer)

        return await self._term_operation(
            term_id,
            TermOperation.ASK_QUESTION,
            lambda sid, term: self.client.ask_question(sid, question, term_id, term.term_text),
            apply,
        )

    async def review_modification(self, term_id: str, user_text: str) -> OperationResult:
        """
        Have the AI re-review the user's proposed text.

        A review always un-confirms the term; the user must confirm the
        reviewed text explicitly.
        """
        if not user_text or not user_text.strip():
            return OperationResult.failed(ValidationError("Modified text must not be empty"))

        def apply(response) -> OperationResult:
            updated = self._replace_term(
                term_id,
                user_modified_text=response.reviewed_text,
                reviewed_text=response.reviewed_text,
                is_reviewed_compliant=response.still_compliant,
                reviewed_issue=response.new_issue,
                is_user_confirmed=False,
                last_qa_answer=None,
            )
            return OperationResult.ok(updated)

        return await self._term_operation(
            term_id,
            TermOperation.REVIEW,
            lambda sid, term: self.client.review_modification(sid, term_id, user_text, term.term_text),
            apply,
        )

    async def confirm_modification(self, term_id: str, text: str) -> OperationResult:
        """Lock in the user's text; a stale review is discarded."""
        if not text or not text.strip():
            return OperationResult.failed(ValidationError("Confirmed text must not be empty"))

        def apply(response) -> OperationResult:
            if not response.success:
                return OperationResult.failed(
                    ServerError(response.message or "Failed to confirm modification on backend.")
                )
            updated = self._replace_term(
                term_id,
                is_user_confirmed=True,
                user_modified_text=text,
                reviewed_text=None,
                is_reviewed_compliant=None,
                reviewed_issue=None,
            )
            return OperationResult.ok(updated)

        return await self._term_operation(
            term_id,
            TermOperation.CONFIRM,
            lambda sid, term: self.client.confirm_modification(sid, term_id, text),
            apply,
        )

    async def submit_expert_feedback(self, term_id: str, feedback: ExpertFeedback) -> OperationResult:
        """Record an expert judgment; a verdict overrides every other source."""
        if self._role != UserRole.EXPERT:
            return OperationResult.failed(ValidationError("Expert feedback requires the expert role"))

        def apply(response) -> OperationResult:
            if not response.success:
                return OperationResult.failed(
                    ServerError(response.message or "Failed to submit expert feedback.")
                )
            changes = {"has_expert_feedback": True}
            if response.feedback_id:
                changes["last_expert_feedback_id"] = response.feedback_id
            if feedback.expert_is_compliant is not None:
                changes["expert_override_is_compliant"] = feedback.expert_is_compliant
            return OperationResult.ok(self._replace_term(term_id, **changes))

        return await self._term_operation(
            term_id,
            TermOperation.EXPERT_FEEDBACK,
            lambda sid, term: self.client.submit_expert_feedback(
                ExpertFeedbackPayload(session_id=sid, term_id=term_id, feedback_data=feedback)
            ),
            apply,
        )

    # =========================================================================
    # Generated documents
    # =========================================================================

    async def generate_modified_contract(self) -> OperationResult:
        def apply(response) -> OperationResult:
            if not response.success:
                return OperationResult.failed(
                    ServerError(response.message or "Failed to generate modified contract.")
                )
            filename = self._session.original_filename
            info = ModifiedContractInfo(
                docx=_file_info(response.docx_url, "docx", artifact_filename("modified", filename, "docx")),
                txt=_file_info(response.txt_url, "txt", artifact_filename("modified", filename, "txt")),
                generation_timestamp=utc_timestamp(),
            )
            self._set_state(replace(self._session, modified_contract_info=info), self._terms)
            logger.info(f"Generated modified contract for session {self._session.session_id}")
            return OperationResult.ok(info)

        return await self._session_operation(
            SessionOperation.GENERATE_MODIFIED,
            self.client.generate_modified_contract,
            apply,
        )

    async def generate_marked_contract(self) -> OperationResult:
        def apply(response) -> OperationResult:
            if not response.success:
                return OperationResult.failed(
                    ServerError(response.message or "Failed to generate marked contract.")
                )
            filename = self._session.original_filename
            info = MarkedContractInfo(
                docx=_file_info(response.docx_url, "docx", artifact_filename("marked", filename, "docx")),
                generation_timestamp=utc_timestamp(),
            )
            self._set_state(replace(self._session, marked_contract_info=info), self._terms)
            logger.info(f"Generated marked contract for session {self._session.session_id}")
            return OperationResult.ok(info)

        return await self._session_operation(
            SessionOperation.GENERATE_MARKED,
            self.client.generate_marked_contract,
            apply,
        )

    def update_pdf_preview_info(self, kind: PreviewKind, info: RemoteFileInfo) -> OperationResult:
        error = self._require_session()
        if error:
            return OperationResult.failed(error)
        current = self._session.pdf_preview_info or PdfPreviewInfo()
        preview = replace(current, **{kind.value: info})
        self._set_state(replace(self._session, pdf_preview_info=preview), self._terms)
        return OperationResult.ok(preview)

    def preview_url(self, kind: PreviewKind) -> OperationResult:
        error = self._require_session()
        if error:
            return OperationResult.failed(error)
        return OperationResult.ok(self.client.preview_url(self._session.session_id, kind))

    def set_preview_loading(self, key: str, is_loading: bool):
        self.tracker.set_preview_loading(key, is_loading)

    # =========================================================================
    # Role preference
    # =========================================================================

    def _load_role(self) -> UserRole:
        stored = self.persistence.get(self.settings.role_key)
        if not stored:
            return self.settings.default_user_role
        try:
            return UserRole(stored)
        except ValueError:
            logger.warning(f"Ignoring unknown stored role {stored!r}")
            return self.settings.default_user_role

    def set_role(self, role: UserRole):
        self._role = role
        self.persistence.set(self.settings.role_key, role.value)
        logger.info(f"Switched to {role.value} mode")
        self._notify()

    def toggle_role(self) -> UserRole:
        if self._role == UserRole.EXPERT:
            self.set_role(UserRole.REGULAR_USER)
        else:
            self.set_role(UserRole.EXPERT)
        return self._role


def _file_info(url: Optional[str], fmt: str, display_filename: str) -> Optional[RemoteFileInfo]:
    if not url:
        return None
    return RemoteFileInfo(url=url, format=fmt, display_filename=display_filename)


def build_session_store(settings: Optional[Settings] = None) -> SessionStore:
    """
    Wire a store with the HTTP client, Redis for the session id and SQL for
    the role preference.
    """
    settings = settings or get_settings()
    for warning in settings.validate_persistence_config():
        logger.warning(warning)

    persistence = TieredStorage(
        ephemeral=RedisStorage(settings.redis_url, ttl_seconds=settings.session_id_ttl_seconds),
        durable=SqlStorage(settings.preferences_db_url),
        durable_keys=[settings.role_key],
    )
    return SessionStore(HttpAnalysisClient.from_settings(settings), persistence, settings=settings)
