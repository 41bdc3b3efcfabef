"""
Analysis Service Client
=======================

AnalysisClient is the contract the session store consumes. HttpAnalysisClient
implements it over the service's HTTP API with a shared httpx.AsyncClient.

Failures are raised as engine errors:
- httpx.RequestError -> TransportError
- HTTP 404 -> NotFoundError
- other HTTP errors / malformed bodies -> ServerError
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import httpx
import pydantic

from .config import Settings, get_settings
from .errors import NotFoundError, ServerError, TransportError
from .models import ContractFile
from .schemas import (
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

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class AnalysisClient(ABC):
    """Remote operations against the analysis service"""

    @abstractmethod
    async def upload(
        self, file: ContractFile, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResponse:
        ...

    @abstractmethod
    async def get_session_details(self, session_id: str) -> SessionRecord:
        ...

    @abstractmethod
    async def get_terms(self, session_id: str) -> List[TermRecord]:
        ...

    @abstractmethod
    async def ask_question(
        self,
        session_id: str,
        question: str,
        term_id: Optional[str] = None,
        term_text: Optional[str] = None,
    ) -> str:
        ...

    @abstractmethod
    async def review_modification(
        self, session_id: str, term_id: str, user_text: str, original_text: str
    ) -> ReviewResponse:
        ...

    @abstractmethod
    async def confirm_modification(self, session_id: str, term_id: str, text: str) -> ConfirmResponse:
        ...

    @abstractmethod
    async def generate_modified_contract(self, session_id: str) -> GenerateModifiedResponse:
        ...

    @abstractmethod
    async def generate_marked_contract(self, session_id: str) -> GenerateMarkedResponse:
        ...

    @abstractmethod
    async def submit_expert_feedback(self, payload: ExpertFeedbackPayload) -> ExpertFeedbackResponse:
        ...

    @abstractmethod
    def preview_url(self, session_id: str, kind: PreviewKind) -> str:
        ...


class HttpAnalysisClient(AnalysisClient):
    """
    httpx implementation of AnalysisClient.

    Usage:
        client = HttpAnalysisClient.from_settings()
        upload = await client.upload(ContractFile("lease.docx", data))
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HttpAnalysisClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.analysis_api_url,
            auth_token=settings.analysis_auth_token,
            timeout=settings.analysis_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    # =========================================================================
    # Transport
    # =========================================================================

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        message = f"HTTP error! status: {response.status_code}"
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        if response.reason_phrase:
            return response.reason_phrase
        return message

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Analysis service unreachable ({method} {path}): {e}")
            raise TransportError(f"Could not reach analysis service: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(self._error_message(response))
        if response.is_error:
            message = self._error_message(response)
            logger.error(f"Analysis service error {response.status_code} ({method} {path}): {message}")
            raise ServerError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise ServerError(f"Malformed {model.__name__} from analysis service: {e.error_count()} error(s)") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ServerError("Analysis service returned a non-JSON body") from e

    # =========================================================================
    # Operations
    # =========================================================================

    async def upload(
        self, file: ContractFile, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResponse:
        if on_progress:
            on_progress(50)
        response = await self._request(
            "POST",
            "/analyze",
            files={"file": (file.filename, file.content, file.content_type)},
        )
        if on_progress:
            on_progress(100)
        return self._parse(UploadResponse, self._json(response))

    async def get_session_details(self, session_id: str) -> SessionRecord:
        response = await self._request("GET", f"/session/{session_id}")
        return self._parse(SessionRecord, self._json(response))

    async def get_terms(self, session_id: str) -> List[TermRecord]:
        response = await self._request("GET", f"/terms/{session_id}")
        data = self._json(response)
        if not isinstance(data, list):
            raise ServerError("Analysis service returned terms in an unexpected shape")
        return [self._parse(TermRecord, item) for item in data]

    async def ask_question(
        self,
        session_id: str,
        question: str,
        term_id: Optional[str] = None,
        term_text: Optional[str] = None,
    ) -> str:
        payload = {"question": question}
        if term_id:
            payload["term_id"] = term_id
        if term_text:
            payload["term_text"] = term_text

        response = await self._request(
            "POST", "/interact", params={"session_id": session_id}, json=payload
        )

        if "application/json" in response.headers.get("content-type", ""):
            data = self._json(response)
            if isinstance(data, dict):
                return str(data.get("answer", ""))
            return str(data)
        return response.text

    async def review_modification(
        self, session_id: str, term_id: str, user_text: str, original_text: str
    ) -> ReviewResponse:
        response = await self._request(
            "POST",
            "/review_modification",
            json={
                "session_id": session_id,
                "term_id": term_id,
                "user_modified_text": user_text,
                "original_term_text": original_text,
            },
        )
        return self._parse(ReviewResponse, self._json(response))

    async def confirm_modification(self, session_id: str, term_id: str, text: str) -> ConfirmResponse:
        response = await self._request(
            "POST",
            "/confirm_modification",
            json={"session_id": session_id, "term_id": term_id, "modified_text": text},
        )
        return self._parse(ConfirmResponse, self._json(response))

    async def generate_modified_contract(self, session_id: str) -> GenerateModifiedResponse:
        response = await self._request(
            "POST", "/generate_modified_contract", json={"session_id": session_id}
        )
        return self._parse(GenerateModifiedResponse, self._json(response))

    async def generate_marked_contract(self, session_id: str) -> GenerateMarkedResponse:
        response = await self._request(
            "POST", "/generate_marked_contract", json={"session_id": session_id}
        )
        return self._parse(GenerateMarkedResponse, self._json(response))

    async def submit_expert_feedback(self, payload: ExpertFeedbackPayload) -> ExpertFeedbackResponse:
        response = await self._request(
            "POST", "/feedback/expert", json=payload.model_dump(by_alias=True)
        )
        return self._parse(ExpertFeedbackResponse, self._json(response))

    def preview_url(self, session_id: str, kind: PreviewKind) -> str:
        return f"{self.base_url}/preview_contract/{session_id}/{kind.value}"
