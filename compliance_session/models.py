"""
Data Models for the Session Engine
==================================

Internal, engine-owned representation of:
- Session (one contract analysis run)
- Term (one clause under compliance review)
- ComplianceStats (derived aggregate)

Terms and sessions are frozen; every mutation builds a new record with
dataclasses.replace so a half-updated record is never observable.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .schemas import (
    ContractLanguage,
    FileInfoRecord,
    SessionRecord,
    TermRecord,
)


# =============================================================================
# FILES
# =============================================================================

@dataclass(frozen=True)
class ContractFile:
    """File handed to upload_and_analyze"""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class RemoteFileInfo:
    """Descriptor of a file stored by the analysis service"""
    url: str
    storage_id: str = ""
    format: str = ""
    display_filename: Optional[str] = None

    @classmethod
    def from_record(cls, record: Optional[FileInfoRecord]) -> Optional["RemoteFileInfo"]:
        if record is None:
            return None
        return cls(
            url=record.url,
            storage_id=record.storage_id,
            format=record.format,
            display_filename=record.display_filename,
        )


@dataclass(frozen=True)
class ModifiedContractInfo:
    docx: Optional[RemoteFileInfo] = None
    txt: Optional[RemoteFileInfo] = None
    generation_timestamp: str = ""


@dataclass(frozen=True)
class MarkedContractInfo:
    docx: Optional[RemoteFileInfo] = None
    generation_timestamp: str = ""


@dataclass(frozen=True)
class PdfPreviewInfo:
    modified: Optional[RemoteFileInfo] = None
    marked: Optional[RemoteFileInfo] = None


# =============================================================================
# SESSION
# =============================================================================

@dataclass(frozen=True)
class Session:
    """One contract analysis run"""
    session_id: str
    original_filename: str
    original_format: str = ""
    detected_language: ContractLanguage = ContractLanguage.ENGLISH
    analysis_timestamp: str = ""
    original_contract_plain: Optional[str] = None
    original_contract_markdown: Optional[str] = None
    original_file_info: Optional[RemoteFileInfo] = None
    analysis_results_file_info: Optional[RemoteFileInfo] = None
    modified_contract_info: Optional[ModifiedContractInfo] = None
    marked_contract_info: Optional[MarkedContractInfo] = None
    pdf_preview_info: Optional[PdfPreviewInfo] = None

    @classmethod
    def from_record(cls, record: SessionRecord) -> "Session":
        modified = None
        if record.modified_contract_info is not None:
            modified = ModifiedContractInfo(
                docx=RemoteFileInfo.from_record(record.modified_contract_info.docx),
                txt=RemoteFileInfo.from_record(record.modified_contract_info.txt),
                generation_timestamp=record.modified_contract_info.generation_timestamp,
            )
        marked = None
        if record.marked_contract_info is not None:
            marked = MarkedContractInfo(
                docx=RemoteFileInfo.from_record(record.marked_contract_info.docx),
                generation_timestamp=record.marked_contract_info.generation_timestamp,
            )
        preview = None
        if record.pdf_preview_info is not None:
            preview = PdfPreviewInfo(
                modified=RemoteFileInfo.from_record(record.pdf_preview_info.modified),
                marked=RemoteFileInfo.from_record(record.pdf_preview_info.marked),
            )

        return cls(
            session_id=record.session_id,
            original_filename=record.original_filename,
            original_format=record.original_format,
            detected_language=record.detected_language,
            analysis_timestamp=record.analysis_timestamp,
            original_contract_plain=record.original_contract_plain,
            original_contract_markdown=record.original_contract_markdown,
            original_file_info=RemoteFileInfo.from_record(record.original_file_info),
            analysis_results_file_info=RemoteFileInfo.from_record(record.analysis_results_file_info),
            modified_contract_info=modified,
            marked_contract_info=marked,
            pdf_preview_info=preview,
        )


# =============================================================================
# TERM
# =============================================================================

@dataclass(frozen=True)
class Term:
    """
    One clause of the contract under compliance review.

    Field groups come from distinct authorities:
    - AI initial judgment (ai_*)
    - User edit (user_modified_text, is_user_confirmed)
    - AI re-review of the user's edit (reviewed_*)
    - Expert override (expert_override_is_compliant, last_expert_feedback_id)

    last_qa_answer is transient and never persisted.
    """
    term_id: str
    term_text: str
    ai_is_compliant: bool
    ai_issue: Optional[str] = None
    ai_reference: Optional[str] = None
    ai_suggested_text: Optional[str] = None

    user_modified_text: Optional[str] = None
    is_user_confirmed: bool = False

    reviewed_text: Optional[str] = None
    is_reviewed_compliant: Optional[bool] = None
    reviewed_issue: Optional[str] = None

    expert_override_is_compliant: Optional[bool] = None
    last_expert_feedback_id: Optional[str] = None
    has_expert_feedback: bool = False

    last_qa_answer: Optional[str] = None

    @classmethod
    def from_record(cls, record: TermRecord) -> "Term":
        """Map a raw service record with explicit defaults"""
        return cls(
            term_id=record.term_id,
            term_text=record.term_text,
            ai_is_compliant=record.ai_is_compliant,
            ai_issue=record.ai_issue,
            ai_reference=record.ai_reference,
            ai_suggested_text=record.ai_suggested_text,
            user_modified_text=record.confirmed_modified_text or None,
            is_user_confirmed=bool(record.is_confirmed_by_user),
            reviewed_text=None,
            is_reviewed_compliant=None,
            reviewed_issue=None,
            expert_override_is_compliant=record.expert_override_is_compliant,
            last_expert_feedback_id=record.last_expert_feedback_id or None,
            has_expert_feedback=bool(record.has_expert_feedback),
            last_qa_answer=None,
        )


# =============================================================================
# STATS
# =============================================================================

@dataclass(frozen=True)
class ComplianceStats:
    """Aggregate derived from a term collection"""
    total_terms: int = 0
    compliant_count: int = 0
    non_compliant_count: int = 0
    overall_compliance_percentage: float = 0.0


# =============================================================================
# HELPERS
# =============================================================================

def artifact_filename(prefix: str, original_filename: str, extension: str) -> str:
    """
    Derive a generated-artifact filename from the uploaded one.

    The last extension of the original name is dropped:
        artifact_filename("modified", "lease.v2.pdf", "docx") -> "modified_lease.v2.docx"
    """
    base, _ = os.path.splitext(original_filename)
    return f"{prefix}_{base}.{extension}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class StoreSnapshot:
    """Consistent view handed to subscribers"""
    session: Optional[Session]
    terms: tuple = field(default_factory=tuple)
    stats: ComplianceStats = field(default_factory=ComplianceStats)
    role: Optional[str] = None
    upload_progress: int = 0
    flags: dict = field(default_factory=dict)

    @property
    def term_ids(self) -> List[str]:
        return [t.term_id for t in self.terms]
