"""
Error taxonomy for the export pipeline.

Every failure an export can end in is a subclass of ExportError carrying the
HTTP status and a stable error code. The API layer turns these into JSON
responses; nothing below it knows about HTTP.

Ticket and gate errors are internal to the render hop and never reach the
caller directly.
"""

from typing import Any, Dict, Optional


class ExportError(Exception):
    """Base exception for export failures surfaced to the caller."""

    status_code: int = 500
    error_code: str = "EXPORT_FAILED"
    public_message: str = "PDF export failed. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON error body returned to the caller."""
        return {
            "ok": False,
            "error": self.error_code,
            "message": self.public_message,
        }


class InvalidExportRequest(ExportError):
    """Missing or invalid documentKind / documentId."""

    status_code = 400
    error_code = "INVALID_REQUEST"
    public_message = "Missing or invalid document kind or id."

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["message"] = self.message
        return body


class AuthenticationFailed(ExportError):
    """Bearer token missing, invalid or expired."""

    status_code = 401
    error_code = "UNAUTHENTICATED"
    public_message = "Please sign in again."


class QuotaExceeded(ExportError):
    """Daily export limit reached for the account's plan."""

    status_code = 402
    error_code = "EXPORT_LIMIT_REACHED"
    public_message = "Daily export limit reached. Upgrade your plan for more exports."

    def __init__(self, plan: str, limit: int, used: int):
        super().__init__(f"Export limit reached: plan={plan} limit={limit} used={used}")
        self.plan = plan
        self.limit = limit
        self.used = used

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["plan"] = self.plan
        body["limit"] = self.limit
        return body


class DocumentAccessDenied(ExportError):
    """The authenticated account does not own the requested document."""

    status_code = 403
    error_code = "FORBIDDEN"
    public_message = "You do not have access to this document."


class RenderAuthorizationFailed(ExportError):
    """Navigation succeeded but the gated page reported a non-success status."""

    status_code = 403
    error_code = "RENDER_FORBIDDEN"
    public_message = "The document could not be authorized for rendering."


class DocumentNotFound(ExportError):
    """Valid request, but the underlying document does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"
    public_message = "Document not found."


class RenderTimeout(ExportError):
    """Headless browser did not produce output within the time budget."""

    status_code = 500
    error_code = "RENDER_TIMEOUT"
    public_message = "PDF generation timed out. Please try again."


class RenderEngineFailure(ExportError):
    """Headless browser failed for any other reason."""

    status_code = 500
    error_code = "RENDER_FAILED"


class UsageCommitFailed(ExportError):
    """Export usage could not be recorded."""

    status_code = 500
    error_code = "USAGE_COMMIT_FAILED"


# === Capability tickets ===

class TicketError(Exception):
    """Base exception for capability ticket verification failures."""

    reason = "invalid"


class MalformedTicket(TicketError):
    """A ticket field failed to parse."""

    reason = "malformed"


class InvalidSignature(TicketError):
    """Signature does not match the ticket fields."""

    reason = "invalid_signature"


class TicketExpired(TicketError):
    """Ticket validity window has passed."""

    reason = "expired"


# === Render gate ===

class GateError(Exception):
    """Base exception for the render-view gate."""

    render_status = "forbidden"


class GateUnauthorized(GateError):
    """Ticket failed verification; the document store was not consulted."""

    render_status = "unauthorized"

    def __init__(self, reason: str):
        super().__init__(f"Ticket rejected: {reason}")
        self.reason = reason


class GateNotFound(GateError):
    """Ticket is valid but the document does not exist."""

    render_status = "not-found"


# === Identity ===

class IdentityVerificationError(Exception):
    """Raised by identity verifiers when a bearer token cannot be trusted."""

    def __init__(self, message: str, error_code: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
