"""
Capability tickets for the headless render hop.

A ticket grants whoever holds the URL permission to view exactly one
document for a few minutes. It is an HMAC over a canonical encoding of
(kind, id, expiry, watermark) so the render-view endpoint can verify it with
nothing but the process-wide secret: no database round-trip, no session.

Canonical encoding is versioned and length-prefixed, so distinct field
tuples can never produce the same signed string.
"""

import base64
import hashlib
import hmac
import logging
import re
import time
from typing import Callable, Dict, Mapping, Optional, Union

from .errors import InvalidSignature, MalformedTicket, TicketExpired
from .models import DocumentKind, ExportTicket

logger = logging.getLogger(__name__)

TICKET_TTL_SECONDS = 300
CANONICAL_VERSION = "export-ticket:v1"

# Query parameter names carried on the print URL
PARAM_DOCUMENT_ID = "documentId"
PARAM_EXPIRES = "exp"
PARAM_WATERMARK = "wm"
PARAM_SIGNATURE = "sig"

# Unpadded URL-safe base64 of a SHA-256 digest is always 43 chars
_SIGNATURE_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")
_EXPIRES_RE = re.compile(r"^[0-9]{1,12}$")


def _parse_kind(value: Union[DocumentKind, str, None]) -> DocumentKind:
    if isinstance(value, DocumentKind):
        return value
    try:
        return DocumentKind(value)
    except ValueError:
        raise MalformedTicket(f"Unknown document kind: {value!r}")


def _parse_expires(value: Union[int, str, None]) -> int:
    if isinstance(value, bool):
        raise MalformedTicket("Expiry must be an integer")
    if isinstance(value, int):
        if value < 0:
            raise MalformedTicket("Expiry must be non-negative")
        return value
    if isinstance(value, str) and _EXPIRES_RE.match(value.strip()):
        return int(value.strip())
    raise MalformedTicket("Expiry must be an integer")


def _parse_watermark(value: Union[bool, str, None]) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "0":
        return False
    if value == "1":
        return True
    raise MalformedTicket("Watermark flag must be 0 or 1")


def _canonical(kind: DocumentKind, document_id: str, expires_at: int, watermark: bool) -> bytes:
    fields = [kind.value, document_id, str(expires_at), "1" if watermark else "0"]
    encoded = "".join(f"{len(f)}:{f}" for f in fields)
    return f"{CANONICAL_VERSION}|{encoded}".encode("utf-8")


class TicketCodec:
    """
    Mints and verifies capability tickets.

    The secret is required at construction; the service builds one codec at
    startup from validated settings and shares it read-only.

    Usage:
        codec = TicketCodec(secret)
        ticket = codec.mint(DocumentKind.RESUME, "abc123", watermark=True)
        codec.verify_ticket(ticket)
    """

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("PDF signing secret is required")
        self._secret = secret.encode("utf-8")
        self._clock = clock

    def now(self) -> int:
        """Current unix time in whole seconds."""
        return int(self._clock())

    def sign(
        self,
        document_kind: DocumentKind,
        document_id: str,
        expires_at: int,
        watermark: bool,
    ) -> str:
        """Compute the ticket signature for the given fields."""
        digest = hmac.new(
            self._secret,
            _canonical(document_kind, document_id, expires_at, watermark),
            hashlib.sha256,
        ).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def mint(
        self,
        document_kind: DocumentKind,
        document_id: str,
        ttl_seconds: int = TICKET_TTL_SECONDS,
        watermark: bool = False,
    ) -> ExportTicket:
        """
        Create a ticket valid for ttl_seconds from now.

        Args:
            document_kind: Kind of the document to expose
            document_id: Identifier of the document
            ttl_seconds: Validity window (exports always use 300s)
            watermark: Whether the printable view must carry the watermark

        Returns:
            Signed ExportTicket
        """
        if not document_id:
            raise ValueError("document_id is required")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        kind = _parse_kind(document_kind)
        expires_at = self.now() + ttl_seconds
        return ExportTicket(
            document_kind=kind,
            document_id=document_id,
            expires_at=expires_at,
            watermark=watermark,
            signature=self.sign(kind, document_id, expires_at, watermark),
        )

    def verify(
        self,
        document_kind: Union[DocumentKind, str, None],
        document_id: Optional[str],
        expires_at: Union[int, str, None],
        signature: Optional[str],
        watermark: Union[bool, str, None] = False,
    ) -> None:
        """
        Verify ticket fields against their signature.

        Signature is checked before expiry, so a forged ticket is always
        reported as InvalidSignature.

        Raises:
            MalformedTicket: A field failed to parse
            InvalidSignature: Signature does not match the fields
            TicketExpired: now > expires_at
        """
        kind = _parse_kind(document_kind)
        if not document_id or not isinstance(document_id, str):
            raise MalformedTicket("Document id is required")
        exp = _parse_expires(expires_at)
        wm = _parse_watermark(watermark)
        if not signature or not _SIGNATURE_RE.match(signature):
            raise MalformedTicket("Signature is missing or not well-formed")

        expected = self.sign(kind, document_id, exp, wm)
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii")):
            raise InvalidSignature("Ticket signature mismatch")

        if self.now() > exp:
            raise TicketExpired(f"Ticket expired {self.now() - exp}s ago")

    def verify_ticket(self, ticket: ExportTicket) -> None:
        """Verify a ticket object (see verify)."""
        self.verify(
            ticket.document_kind,
            ticket.document_id,
            ticket.expires_at,
            ticket.signature,
            ticket.watermark,
        )

    @staticmethod
    def to_query(ticket: ExportTicket) -> Dict[str, str]:
        """Query parameters carrying the ticket on the print URL."""
        return {
            PARAM_DOCUMENT_ID: ticket.document_id,
            PARAM_EXPIRES: str(ticket.expires_at),
            PARAM_WATERMARK: "1" if ticket.watermark else "0",
            PARAM_SIGNATURE: ticket.signature,
        }

    @staticmethod
    def parse_query(document_kind: Union[DocumentKind, str], params: Mapping[str, str]) -> ExportTicket:
        """
        Rebuild a ticket from the print URL's path kind and query parameters.

        Only parses; call verify_ticket to check it.

        Raises:
            MalformedTicket: A required parameter is missing or unparseable
        """
        kind = _parse_kind(document_kind)
        document_id = (params.get(PARAM_DOCUMENT_ID) or "").strip()
        signature = (params.get(PARAM_SIGNATURE) or "").strip()
        if not document_id or not signature:
            raise MalformedTicket("Missing parameters")
        return ExportTicket(
            document_kind=kind,
            document_id=document_id,
            expires_at=_parse_expires(params.get(PARAM_EXPIRES)),
            watermark=_parse_watermark(params.get(PARAM_WATERMARK)),
            signature=signature,
        )
