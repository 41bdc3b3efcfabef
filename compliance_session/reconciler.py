"""
Term Reconciler
===============

Pure functions that resolve a term's effective compliance verdict and fold
it into aggregate statistics.

Precedence (highest wins):
1. Expert override, when set
2. AI re-review of the user's edit, when a review result exists
3. AI initial judgment

User confirmation never asserts compliance on its own.
"""

from enum import Enum
from typing import Iterable

from .models import ComplianceStats, Term


class TermState(str, Enum):
    """Lifecycle position of a term, derived from its fields"""
    AI_ONLY = "ai_only"
    USER_EDITING = "user_editing"
    REVIEWED_VALID = "reviewed_valid"
    REVIEWED_INVALID = "reviewed_invalid"
    CONFIRMED = "confirmed"
    EXPERT_OVERRIDDEN = "expert_overridden"


def effective_compliance(term: Term) -> bool:
    """Resolve the single authoritative verdict for a term."""
    if term.expert_override_is_compliant is not None:
        return term.expert_override_is_compliant
    if term.is_reviewed_compliant is not None:
        return term.is_reviewed_compliant
    return term.ai_is_compliant


def compute_stats(terms: Iterable[Term]) -> ComplianceStats:
    """
    Fold effective_compliance over a term collection.

    Returns zero stats for an empty collection.
    """
    total = 0
    compliant = 0
    for term in terms:
        total += 1
        if effective_compliance(term):
            compliant += 1

    if total == 0:
        return ComplianceStats()

    return ComplianceStats(
        total_terms=total,
        compliant_count=compliant,
        non_compliant_count=total - compliant,
        overall_compliance_percentage=compliant / total * 100,
    )


def describe_state(term: Term) -> TermState:
    if term.expert_override_is_compliant is not None:
        return TermState.EXPERT_OVERRIDDEN
    if term.is_user_confirmed:
        return TermState.CONFIRMED
    if term.is_reviewed_compliant is not None:
        if term.is_reviewed_compliant:
            return TermState.REVIEWED_VALID
        return TermState.REVIEWED_INVALID
    if term.user_modified_text is not None:
        return TermState.USER_EDITING
    return TermState.AI_ONLY
