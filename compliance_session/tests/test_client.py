"""
HTTP Analysis Client Tests
==========================

Exercises HttpAnalysisClient against httpx.MockTransport.
"""

import json

import httpx
import pytest

from compliance_session.client import HttpAnalysisClient
from compliance_session.config import Settings
from compliance_session.errors import NotFoundError, ServerError, TransportError
from compliance_session.models import ContractFile
from compliance_session.schemas import ExpertFeedback, ExpertFeedbackPayload, PreviewKind


BASE_URL = "http://analysis.test"


def make_client(handler, token=None) -> HttpAnalysisClient:
    return HttpAnalysisClient(BASE_URL, auth_token=token, transport=httpx.MockTransport(handler))


# =============================================================================
# Success paths
# =============================================================================

class TestOperations:

    @pytest.mark.asyncio
    async def test_upload_posts_multipart_and_reports_progress(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={"session_id": "s1", "message": "Analyzed"})

        progress = []
        client = make_client(handler)
        response = await client.upload(ContractFile("lease.docx", b"PK\x03\x04data"), progress.append)
        await client.close()

        assert response.session_id == "s1"
        assert response.message == "Analyzed"
        assert seen["path"] == "/analyze"
        assert b'filename="lease.docx"' in seen["body"]
        assert progress == [50, 100]

    @pytest.mark.asyncio
    async def test_get_terms_maps_wire_names(self):
        def handler(request):
            assert request.url.path == "/terms/s1"
            return httpx.Response(200, json=[
                {
                    "term_id": "t1",
                    "term_text": "Late fee of 5% per month",
                    "is_valid_sharia": False,
                    "sharia_issue": "Interest",
                    "reference_number": "Std 8",
                    "modified_term": "Fixed charity donation",
                    "is_confirmed_by_user": True,
                    "confirmed_modified_text": "Fixed donation",
                    "expert_override_is_valid_sharia": None,
                },
                {"term_id": "t2", "term_text": "Delivery in 30 days", "is_valid_sharia": True},
            ])

        client = make_client(handler)
        terms = await client.get_terms("s1")

        assert [t.term_id for t in terms] == ["t1", "t2"]
        assert terms[0].ai_is_compliant is False
        assert terms[0].ai_issue == "Interest"
        assert terms[0].ai_suggested_text == "Fixed charity donation"
        assert terms[0].is_confirmed_by_user is True
        assert terms[1].has_expert_feedback is None

    @pytest.mark.asyncio
    async def test_get_session_details(self):
        def handler(request):
            return httpx.Response(200, json={
                "_id": "abc",
                "session_id": "s1",
                "original_filename": "lease.docx",
                "original_format": "docx",
                "detected_contract_language": "ar",
                "analysis_timestamp": "2024-05-01T10:00:00Z",
                "modified_contract_info": {
                    "docx_cloudinary_info": {
                        "url": "https://files/m.docx",
                        "public_id": "m1",
                        "format": "docx",
                        "user_facing_filename": "modified_lease.docx",
                    },
                    "generation_timestamp": "2024-05-01T11:00:00Z",
                },
            })

        client = make_client(handler)
        record = await client.get_session_details("s1")

        assert record.detected_language.value == "ar"
        assert record.modified_contract_info.docx.storage_id == "m1"
        assert record.modified_contract_info.docx.display_filename == "modified_lease.docx"

    @pytest.mark.asyncio
    async def test_ask_question_sends_term_context(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, text="It is permissible.", headers={"content-type": "text/plain"})

        client = make_client(handler)
        answer = await client.ask_question("s1", "Is this allowed?", "t1", "Clause text")

        assert answer == "It is permissible."
        assert seen["params"] == {"session_id": "s1"}
        assert seen["json"] == {"question": "Is this allowed?", "term_id": "t1", "term_text": "Clause text"}

    @pytest.mark.asyncio
    async def test_ask_question_json_string_body(self):
        client = make_client(lambda request: httpx.Response(200, json="Answer as JSON string"))
        assert await client.ask_question("s1", "General?") == "Answer as JSON string"

    @pytest.mark.asyncio
    async def test_review_modification(self):
        def handler(request):
            body = json.loads(request.content)
            assert body == {
                "session_id": "s1",
                "term_id": "t1",
                "user_modified_text": "new text",
                "original_term_text": "old text",
            }
            return httpx.Response(200, json={
                "reviewed_text": "new text (polished)",
                "is_still_valid_sharia": True,
                "new_sharia_issue": None,
            })

        client = make_client(handler)
        review = await client.review_modification("s1", "t1", "new text", "old text")
        assert review.still_compliant is True
        assert review.reviewed_text == "new text (polished)"

    @pytest.mark.asyncio
    async def test_generate_modified_contract_urls(self):
        def handler(request):
            assert request.url.path == "/generate_modified_contract"
            return httpx.Response(200, json={
                "success": True,
                "message": "ok",
                "modified_docx_cloudinary_url": "https://files/m.docx",
            })

        client = make_client(handler)
        response = await client.generate_modified_contract("s1")
        assert response.docx_url == "https://files/m.docx"
        assert response.txt_url is None

    @pytest.mark.asyncio
    async def test_expert_feedback_uses_wire_aliases(self):
        seen = {}

        def handler(request):
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "message": "Saved", "feedback_id": "fb-9"})

        client = make_client(handler)
        payload = ExpertFeedbackPayload(
            session_id="s1",
            term_id="t1",
            feedback_data=ExpertFeedback(ai_analysis_approved=False, expert_is_compliant=True, comment="Fine"),
        )
        response = await client.submit_expert_feedback(payload)

        assert response.feedback_id == "fb-9"
        data = seen["json"]["feedback_data"]
        assert data["aiAnalysisApproved"] is False
        assert data["expertIsValidSharia"] is True
        assert data["expertComment"] == "Fine"

    @pytest.mark.asyncio
    async def test_bearer_token_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True, "message": "ok"})

        client = make_client(handler, token="secret")
        await client.confirm_modification("s1", "t1", "text")
        assert seen["auth"] == "Bearer secret"

    def test_preview_url(self):
        client = HttpAnalysisClient(BASE_URL + "/")
        assert client.preview_url("s1", PreviewKind.MARKED) == f"{BASE_URL}/preview_contract/s1/marked"

    def test_from_settings(self):
        settings = Settings(_env_file=None, analysis_api_url="http://svc:9000", analysis_auth_token="tok")
        client = HttpAnalysisClient.from_settings(settings)
        assert client.base_url == "http://svc:9000"
        assert client.auth_token == "tok"


# =============================================================================
# Error mapping
# =============================================================================

class TestErrorMapping:

    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": "Session not found"}))
        with pytest.raises(NotFoundError) as exc_info:
            await client.get_session_details("gone")
        assert exc_info.value.message == "Session not found"

    @pytest.mark.asyncio
    async def test_server_error_message_from_body(self):
        client = make_client(lambda request: httpx.Response(500, json={"error": "Model overloaded"}))
        with pytest.raises(ServerError) as exc_info:
            await client.generate_marked_contract("s1")
        assert exc_info.value.message == "Model overloaded"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_server_error_falls_back_to_reason_phrase(self):
        client = make_client(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))
        with pytest.raises(ServerError) as exc_info:
            await client.get_terms("s1")
        assert exc_info.value.message == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(TransportError):
            await client.get_terms("s1")

    @pytest.mark.asyncio
    async def test_malformed_body_is_server_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"reviewed_text": "x"}))
        with pytest.raises(ServerError):
            await client.review_modification("s1", "t1", "x", "y")

    @pytest.mark.asyncio
    async def test_terms_not_a_list(self):
        client = make_client(lambda request: httpx.Response(200, json={"terms": []}))
        with pytest.raises(ServerError):
            await client.get_terms("s1")
