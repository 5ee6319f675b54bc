"""
Shared models for the export service.

Pydantic models define the API request/response shapes; dataclasses hold the
internal value objects passed between the pipeline components.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class DocumentKind(str, Enum):
    """Exportable document kinds (values are the wire names)."""

    RESUME = "resume"
    COVER_LETTER = "coverLetter"
    INTERVIEW_GUIDE = "interviewGuide"

    @property
    def filename(self) -> str:
        """Download filename for this kind."""
        return f"{self.value}.pdf"

    @property
    def display_title(self) -> str:
        """Human readable title used on the printable view."""
        return {
            DocumentKind.RESUME: "Resume",
            DocumentKind.COVER_LETTER: "Cover Letter",
            DocumentKind.INTERVIEW_GUIDE: "Interview Guide",
        }[self]


class Plan(str, Enum):
    """Account plans."""

    FREE = "FREE"
    PAID = "PAID"
    ADMIN = "ADMIN"


# === Value objects ===

@dataclass(frozen=True)
class ExportTicket:
    """Signed, short-lived capability to view one document. Never persisted."""

    document_kind: DocumentKind
    document_id: str
    expires_at: int
    watermark: bool
    signature: str


@dataclass
class UsageRecord:
    """Per-day export counter as stored on the account."""

    date: Optional[str] = None
    count: int = 0
    # Stored value exactly as read; used as the compare-and-set precondition
    stored: Any = field(default=None, compare=False, repr=False)


@dataclass
class Account:
    """Caller account snapshot loaded from the account store."""

    account_id: str
    email: Optional[str] = None
    plan: Any = None  # raw stored value, resolved leniently
    is_admin_override: bool = False
    usage: UsageRecord = field(default_factory=UsageRecord)


@dataclass(frozen=True)
class Entitlement:
    """Export rules derived from an account's plan."""

    plan: Plan
    export_limit_per_day: int
    watermark_enabled: bool


@dataclass
class Document:
    """Stored document as seen by the export core."""

    kind: DocumentKind
    document_id: str
    owner_id: Optional[str]
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RenderResult:
    """Rendered PDF ready to be returned to the caller."""

    pdf_bytes: bytes
    filename: str
    # Account charged once the PDF has been delivered
    account_id: Optional[str] = None


@dataclass(frozen=True)
class VerifiedIdentity:
    """Result of identity-provider token verification."""

    account_id: str
    email: Optional[str] = None


# === API models ===

class ExportRequestBody(BaseModel):
    """Request body for POST /export."""

    documentKind: Optional[str] = Field(None, description="resume | coverLetter | interviewGuide")
    documentId: Optional[str] = Field(None, description="Identifier of the stored document")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    timestamp: datetime
    playwright_ready: bool = True
    playwright_error: Optional[str] = None
    active_renders: int = 0
    max_concurrent: int = 0
