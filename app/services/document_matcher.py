"""
Matching of legal references against the governing documents on file.
Used by the compliance checks to decide whether a cited bylaw or
declaration article can actually be verified.
"""
from __future__ import annotations

import re

from unidecode import unidecode

from app.models.administration import DocumentStatus

BYLAWS = "bylaws"
COVENANTS = "covenants"

KIND_PATTERNS = {
    BYLAWS: [r"\bby-?laws?\b"],
    COVENANTS: [r"\bcc&?rs?\b", r"\bdeclaration\b", r"\bcovenants?\b", r"\bmaster deed\b"],
}


def normalize_for_matching(text: str) -> str:
    result = unidecode(text or "").lower()
    result = result.replace(".", "")
    return " ".join(result.split())


def document_kinds(text: str) -> set[str]:
    """Governing-document kinds mentioned in a document name or legal reference."""
    norm = normalize_for_matching(text)
    return {
        kind for kind, patterns in KIND_PATTERNS.items()
        if any(re.search(p, norm) for p in patterns)
    }


def _is_current(doc) -> bool:
    return doc.status == DocumentStatus.CURRENT or doc.status == DocumentStatus.CURRENT.value


def current_documents_of_kind(kind: str, documents) -> list:
    return [d for d in documents if _is_current(d) and kind in document_kinds(d.name)]


def has_current_document(kind: str, documents) -> bool:
    return bool(current_documents_of_kind(kind, documents))


def missing_cited_documents(legal_ref: str, documents) -> set[str]:
    """Kinds cited by ``legal_ref`` with no current document on file."""
    return {
        kind for kind in document_kinds(legal_ref)
        if not has_current_document(kind, documents)
    }
