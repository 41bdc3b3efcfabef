"""
Pydantic Schemas for the Analysis Service
=========================================

Wire records exchanged with the remote analysis service.

Field names on the wire follow the service (sharia-analysis naming); the
attributes exposed to the engine use neutral compliance names. Aliases map
one to the other, and `populate_by_name` lets tests and fakes build records
with the engine names directly.
"""

from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class ContractLanguage(str, Enum):
    """Language detected for the uploaded contract"""
    ARABIC = "ar"
    ENGLISH = "en"


class UserRole(str, Enum):
    """Role preference of the person using the store"""
    REGULAR_USER = "regular_user"
    EXPERT = "shariah_expert"


class PreviewKind(str, Enum):
    """Which generated contract a PDF preview belongs to"""
    MODIFIED = "modified"
    MARKED = "marked"


# =============================================================================
# FILE DESCRIPTORS
# =============================================================================

class FileInfoRecord(BaseModel):
    """Remote file descriptor as returned by the service"""
    url: str
    storage_id: str = Field("", alias="public_id")
    format: str = ""
    display_filename: Optional[str] = Field(None, alias="user_facing_filename")

    class Config:
        populate_by_name = True


class ModifiedContractRecord(BaseModel):
    docx: Optional[FileInfoRecord] = Field(None, alias="docx_cloudinary_info")
    txt: Optional[FileInfoRecord] = Field(None, alias="txt_cloudinary_info")
    generation_timestamp: str = ""

    class Config:
        populate_by_name = True


class MarkedContractRecord(BaseModel):
    docx: Optional[FileInfoRecord] = Field(None, alias="docx_cloudinary_info")
    generation_timestamp: str = ""

    class Config:
        populate_by_name = True


class PdfPreviewRecord(BaseModel):
    modified: Optional[FileInfoRecord] = None
    marked: Optional[FileInfoRecord] = None


# =============================================================================
# SESSION / TERM RECORDS
# =============================================================================

class TermRecord(BaseModel):
    """Single analyzed term as stored by the service"""
    term_id: str
    term_text: str
    ai_is_compliant: bool = Field(..., alias="is_valid_sharia")
    ai_issue: Optional[str] = Field(None, alias="sharia_issue")
    ai_reference: Optional[str] = Field(None, alias="reference_number")
    ai_suggested_text: Optional[str] = Field(None, alias="modified_term")
    is_confirmed_by_user: Optional[bool] = None
    confirmed_modified_text: Optional[str] = None
    has_expert_feedback: Optional[bool] = None
    last_expert_feedback_id: Optional[str] = None
    expert_override_is_compliant: Optional[bool] = Field(
        None, alias="expert_override_is_valid_sharia"
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "term_id": "clause_3",
                "term_text": "The buyer shall pay a 5% late fee per month.",
                "is_valid_sharia": False,
                "sharia_issue": "Late-payment interest",
                "reference_number": "AAOIFI 8/5",
                "modified_term": "The buyer shall donate a fixed amount to charity on late payment.",
            }
        }


class SessionRecord(BaseModel):
    """Session metadata as stored by the service"""
    session_id: str
    original_filename: str
    original_format: str = ""
    detected_language: ContractLanguage = Field(
        ContractLanguage.ENGLISH, alias="detected_contract_language"
    )
    analysis_timestamp: str = ""
    original_contract_plain: Optional[str] = None
    original_contract_markdown: Optional[str] = None
    original_file_info: Optional[FileInfoRecord] = Field(None, alias="original_cloudinary_info")
    analysis_results_file_info: Optional[FileInfoRecord] = Field(
        None, alias="analysis_results_cloudinary_info"
    )
    modified_contract_info: Optional[ModifiedContractRecord] = None
    marked_contract_info: Optional[MarkedContractRecord] = None
    pdf_preview_info: Optional[PdfPreviewRecord] = None

    class Config:
        populate_by_name = True


# =============================================================================
# OPERATION RESPONSES
# =============================================================================

class UploadResponse(BaseModel):
    session_id: str
    message: str = ""


class ReviewResponse(BaseModel):
    """AI re-review of a user's proposed text"""
    reviewed_text: str
    still_compliant: bool = Field(..., alias="is_still_valid_sharia")
    new_issue: Optional[str] = Field(None, alias="new_sharia_issue")
    new_reference: Optional[str] = Field(None, alias="new_reference_number")

    class Config:
        populate_by_name = True


class ConfirmResponse(BaseModel):
    success: bool
    message: str = ""


class GenerateModifiedResponse(BaseModel):
    success: bool
    message: str = ""
    docx_url: Optional[str] = Field(None, alias="modified_docx_cloudinary_url")
    txt_url: Optional[str] = Field(None, alias="modified_txt_cloudinary_url")

    class Config:
        populate_by_name = True


class GenerateMarkedResponse(BaseModel):
    success: bool
    message: str = ""
    docx_url: Optional[str] = Field(None, alias="marked_docx_cloudinary_url")

    class Config:
        populate_by_name = True


# =============================================================================
# EXPERT FEEDBACK
# =============================================================================

class ExpertFeedback(BaseModel):
    """Expert judgment on one term"""
    ai_analysis_approved: Optional[bool] = Field(None, alias="aiAnalysisApproved")
    expert_is_compliant: Optional[bool] = Field(None, alias="expertIsValidSharia")
    comment: str = Field("", alias="expertComment")
    corrected_issue: Optional[str] = Field(None, alias="expertCorrectedShariaIssue")
    corrected_reference: Optional[str] = Field(None, alias="expertCorrectedReference")
    corrected_suggestion: Optional[str] = Field(None, alias="expertCorrectedSuggestion")

    class Config:
        populate_by_name = True


class ExpertFeedbackPayload(BaseModel):
    session_id: str
    term_id: str
    feedback_data: ExpertFeedback


class ExpertFeedbackResponse(BaseModel):
    success: bool
    message: str = ""
    feedback_id: Optional[str] = None


__all__ = [
    "ContractLanguage", "UserRole", "PreviewKind",
    "FileInfoRecord", "ModifiedContractRecord", "MarkedContractRecord", "PdfPreviewRecord",
    "TermRecord", "SessionRecord",
    "UploadResponse", "ReviewResponse", "ConfirmResponse",
    "GenerateModifiedResponse", "GenerateMarkedResponse",
    "ExpertFeedback", "ExpertFeedbackPayload", "ExpertFeedbackResponse",
]
