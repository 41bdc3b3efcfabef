"""
Shared fixtures: an in-memory AnalysisClient with per-call gates and
failure injection, plus a store wired to it.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from compliance_session.client import AnalysisClient
from compliance_session.config import Settings
from compliance_session.errors import EngineError, NotFoundError
from compliance_session.persistence import MemoryStorage
from compliance_session.schemas import (
    ConfirmResponse,
    ExpertFeedbackPayload,
    ExpertFeedbackResponse,
    GenerateMarkedResponse,
    GenerateModifiedResponse,
    PreviewKind,
    ReviewResponse,
    SessionRecord,
    TermRecord,
    UploadResponse,
)
from compliance_session.store import SessionStore


def make_term_record(term_id: str, compliant: bool = True, **extra) -> TermRecord:
    return TermRecord(
        term_id=term_id,
        term_text=f"Original text of {term_id}",
        ai_is_compliant=compliant,
        **extra,
    )


class FakeAnalysisClient(AnalysisClient):
    """
    Scriptable client.

    hold(name) makes the *next* call of that operation wait until the
    returned event is set; fail(name, error) makes every call raise.
    """

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self.sessions: Dict[str, Tuple[SessionRecord, List[TermRecord]]] = {}
        self.upload_ids: Dict[str, str] = {}
        self.failures: Dict[str, EngineError] = {}
        self.review_responses: Dict[str, ReviewResponse] = {}
        self.confirm_response = ConfirmResponse(success=True, message="Confirmed")
        self.modified_response = GenerateModifiedResponse(
            success=True,
            message="Generated",
            docx_url="https://files.example/modified.docx",
            txt_url="https://files.example/modified.txt",
        )
        self.marked_response = GenerateMarkedResponse(
            success=True, message="Generated", docx_url="https://files.example/marked.docx"
        )
        self.feedback_response = ExpertFeedbackResponse(success=True, message="Saved", feedback_id="fb-1")
        self._gates: Dict[str, asyncio.Event] = {}

    # -- scripting -------------------------------------------------------

    def add_session(self, session_id: str, terms: List[TermRecord], filename: str = "lease.docx"):
        record = SessionRecord(
            session_id=session_id,
            original_filename=filename,
            original_format="docx",
            detected_language="en",
            analysis_timestamp="2024-05-01T10:00:00Z",
        )
        self.sessions[session_id] = (record, terms)

    def hold(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[name] = gate
        return gate

    def fail(self, name: str, error: EngineError):
        self.failures[name] = error

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def _enter(self, name: str, *args):
        self.calls.append((name, args))
        gate = self._gates.pop(name, None)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    # -- AnalysisClient --------------------------------------------------

    async def upload(self, file, on_progress=None) -> UploadResponse:
        if on_progress:
            on_progress(50)
        await self._enter("upload", file.filename)
        if on_progress:
            on_progress(100)
        session_id = self.upload_ids.get(file.filename, f"s-{file.filename}")
        return UploadResponse(session_id=session_id, message="Contract analyzed")

    async def get_session_details(self, session_id: str) -> SessionRecord:
        await self._enter("get_session_details", session_id)
        if session_id not in self.sessions:
            raise NotFoundError(f"Session {session_id} not found")
        return self.sessions[session_id][0]

    async def get_terms(self, session_id: str) -> List[TermRecord]:
        await self._enter("get_terms", session_id)
        if session_id not in self.sessions:
            raise NotFoundError(f"Session {session_id} not found")
        return list(self.sessions[session_id][1])

    async def ask_question(self, session_id, question, term_id=None, term_text=None) -> str:
        await self._enter("ask_question", session_id, question, term_id, term_text)
        if term_id:
            return f"About {term_id}: {question}"
        return f"General: {question}"

    async def review_modification(self, session_id, term_id, user_text, original_text) -> ReviewResponse:
        await self._enter("review_modification", session_id, term_id, user_text, original_text)
        return self.review_responses.get(
            term_id, ReviewResponse(reviewed_text=user_text, still_compliant=True)
        )

    async def confirm_modification(self, session_id, term_id, text) -> ConfirmResponse:
        await self._enter("confirm_modification", session_id, term_id, text)
        return self.confirm_response

    async def generate_modified_contract(self, session_id) -> GenerateModifiedResponse:
        await self._enter("generate_modified_contract", session_id)
        return self.modified_response

    async def generate_marked_contract(self, session_id) -> GenerateMarkedResponse:
        await self._enter("generate_marked_contract", session_id)
        return self.marked_response

    async def submit_expert_feedback(self, payload: ExpertFeedbackPayload) -> ExpertFeedbackResponse:
        await self._enter("submit_expert_feedback", payload)
        return self.feedback_response

    def preview_url(self, session_id: str, kind: PreviewKind) -> str:
        return f"https://analysis.example/preview_contract/{session_id}/{kind.value}"


async def _settle(rounds: int = 5):
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def fake_client():
    client = FakeAnalysisClient()
    client.add_session(
        "s1",
        [
            make_term_record("t1", compliant=False, ai_issue="Interest-bearing penalty"),
            make_term_record("t2"),
            make_term_record("t3"),
        ],
    )
    client.upload_ids["lease.docx"] = "s1"
    return client


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(fake_client, storage, settings):
    return SessionStore(fake_client, storage, settings=settings)
