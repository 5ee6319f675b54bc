"""
Render-view gate.

Guards the page the headless browser navigates to. The capability ticket in
the query string is the only credential consulted: no cookies, sessions or
headers. The gate fails closed: a ticket that does not verify never reaches
the document store, so invalid tickets learn nothing about which documents
exist.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from .errors import GateError, GateNotFound, GateUnauthorized, TicketError
from .models import Document, DocumentKind
from .print_helpers import build_error_html, document_to_html
from .repositories import DocumentStoreInterface
from .tickets import TicketCodec

logger = logging.getLogger(__name__)

RENDER_STATUS_HEADER = "X-Render-Status"
RENDER_STATUS_OK = "ok"


@dataclass
class GateResponse:
    """Printable page plus its structured render status."""

    render_status: str
    html: str

    @property
    def ok(self) -> bool:
        return self.render_status == RENDER_STATUS_OK


class RenderAuthorizationGate:
    """Verifies capability tickets and produces printable views."""

    def __init__(
        self,
        codec: TicketCodec,
        document_store: DocumentStoreInterface,
        watermark_text: str = "CareerMindAI",
    ):
        self._codec = codec
        self._document_store = document_store
        self._watermark_text = watermark_text

    def authorize(
        self,
        document_kind: Union[DocumentKind, str],
        document_id: str,
        expires_at: Union[int, str],
        signature: str,
        watermark: Union[bool, str, None] = False,
    ) -> Document:
        """
        Verify the ticket, then fetch the document.

        Raises:
            GateUnauthorized: Ticket malformed, forged or expired
            GateNotFound: Ticket valid but the document is absent
        """
        try:
            self._codec.verify(document_kind, document_id, expires_at, signature, watermark)
        except TicketError as e:
            logger.warning(f"Render-view ticket rejected ({e.reason})")
            raise GateUnauthorized(e.reason)

        kind = DocumentKind(document_kind)
        document = self._document_store.get_document(kind, document_id)
        if document is None:
            logger.warning(f"Render-view document missing: {kind.value}/{document_id}")
            raise GateNotFound(f"{kind.value} not found")
        return document

    def render_view(self, document_kind: str, params: Mapping[str, str]) -> GateResponse:
        """
        Produce the page for a render-view request.

        Args:
            document_kind: Kind from the URL path
            params: Query parameters (documentId, exp, wm, sig)

        Returns:
            GateResponse carrying either the document or an error page
        """
        try:
            ticket = self._codec.parse_query(document_kind, params)
        except TicketError as e:
            logger.warning(f"Render-view ticket rejected ({e.reason})")
            return self._error(GateUnauthorized(e.reason))

        try:
            document = self.authorize(
                ticket.document_kind,
                ticket.document_id,
                ticket.expires_at,
                ticket.signature,
                ticket.watermark,
            )
        except GateError as e:
            return self._error(e)

        watermark_text: Optional[str] = self._watermark_text if ticket.watermark else None
        return GateResponse(
            render_status=RENDER_STATUS_OK,
            html=document_to_html(document, watermark_text),
        )

    @staticmethod
    def _error(error: GateError) -> GateResponse:
        return GateResponse(
            render_status=error.render_status,
            html=build_error_html(error.render_status),
        )
