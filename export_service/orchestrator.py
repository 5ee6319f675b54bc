"""
Export orchestration.

Drives one export from bearer token to PDF bytes:

    AUTHENTICATING -> RESOLVING_ENTITLEMENT -> CHECKING_QUOTA -> MINTING_TICKET
    -> LAUNCHING_RENDER -> NAVIGATING -> CAPTURING -> COMMITTING_USAGE -> DONE

Any state can end in FAILED. render() stops after CAPTURING; commit_usage()
runs COMMITTING_USAGE once the PDF was delivered, so a caller that
disconnects before receiving the bytes is never charged. There is exactly one
render attempt per request so a retry can never charge quota twice.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import urlencode

from .browser import EngineError, EngineTimeout, HeadlessEngine, NavigationResult, RenderPage
from .entitlements import EntitlementResolver
from .errors import (
    AuthenticationFailed,
    DocumentAccessDenied,
    DocumentNotFound,
    ExportError,
    IdentityVerificationError,
    InvalidExportRequest,
    RenderAuthorizationFailed,
    RenderEngineFailure,
    RenderTimeout,
)
from .gate import RENDER_STATUS_HEADER, RENDER_STATUS_OK
from .identity import IdentityVerifier
from .models import Account, DocumentKind, Plan, RenderResult
from .print_helpers import RENDER_STATUS_META
from .repositories import AccountRepositoryInterface, DocumentStoreInterface
from .tickets import TICKET_TTL_SECONDS, TicketCodec
from .usage import UsageMeter

logger = logging.getLogger(__name__)

# Fallback when a page carries no structured render status
SENTINEL_MARKERS = ("unauthorized", "not found", "forbidden")

# Extra wall-clock slack on top of the engine's own timeout
_TIMEOUT_GRACE_SECONDS = 5


class ExportState(str, Enum):
    """Export state machine states."""

    AUTHENTICATING = "authenticating"
    RESOLVING_ENTITLEMENT = "resolving_entitlement"
    CHECKING_QUOTA = "checking_quota"
    MINTING_TICKET = "minting_ticket"
    LAUNCHING_RENDER = "launching_render"
    NAVIGATING = "navigating"
    CAPTURING = "capturing"
    COMMITTING_USAGE = "committing_usage"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportRequest:
    """Input of one export."""

    document_kind: Optional[str]
    document_id: Optional[str]
    bearer_token: Optional[str]


@dataclass
class ExportRun:
    """In-memory tracking state for one export."""

    export_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ExportState = ExportState.AUTHENTICATING
    history: List[ExportState] = field(default_factory=lambda: [ExportState.AUTHENTICATING])
    failure: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)

    def advance(self, state: ExportState) -> None:
        self.state = state
        self.history.append(state)
        logger.info(f"[export:{self.export_id[:8]}] -> {state.value}")

    def fail(self, reason: str) -> None:
        self.failure = reason
        self.advance(ExportState.FAILED)


def parse_export_request(request: ExportRequest) -> Tuple[DocumentKind, str]:
    """
    Validate kind and id of an export request.

    Raises:
        InvalidExportRequest: Missing or unknown values
    """
    kind_raw = (request.document_kind or "").strip() if isinstance(request.document_kind, str) else ""
    document_id = (request.document_id or "").strip() if isinstance(request.document_id, str) else ""
    if not kind_raw or not document_id:
        raise InvalidExportRequest("Missing documentKind or documentId")
    try:
        kind = DocumentKind(kind_raw)
    except ValueError:
        raise InvalidExportRequest(f"Invalid documentKind: {kind_raw}")
    return kind, document_id


class RenderOrchestrator:
    """Runs the export state machine."""

    def __init__(
        self,
        identity_verifier: IdentityVerifier,
        accounts: AccountRepositoryInterface,
        documents: DocumentStoreInterface,
        resolver: EntitlementResolver,
        meter: UsageMeter,
        codec: TicketCodec,
        engine: HeadlessEngine,
        public_base_url: str,
        render_timeout_seconds: int = 60,
    ):
        self._identity_verifier = identity_verifier
        self._accounts = accounts
        self._documents = documents
        self._resolver = resolver
        self._meter = meter
        self._codec = codec
        self._engine = engine
        self._public_base_url = public_base_url.rstrip("/")
        self._render_timeout_seconds = render_timeout_seconds

    def build_print_url(self, ticket) -> str:
        """Gated print URL for a ticket."""
        query = urlencode(self._codec.to_query(ticket))
        return f"{self._public_base_url}/render-view/{ticket.document_kind.value}?{query}"

    async def export(self, request: ExportRequest, run: Optional[ExportRun] = None) -> RenderResult:
        """
        Run one export end to end: render, then commit usage.

        For callers that hand the bytes over in-process. The HTTP endpoint
        calls render() and commit_usage() separately so usage is only
        committed once the response body was sent.

        Args:
            request: Kind, id and bearer token
            run: Optional tracking object (a fresh one is created otherwise)

        Returns:
            RenderResult with PDF bytes and filename

        Raises:
            ExportError: Typed failure (see errors module)
        """
        run = run or ExportRun()
        result = await self.render(request, run)
        await self.commit_usage(result, run)
        return result

    async def render(self, request: ExportRequest, run: ExportRun) -> RenderResult:
        """
        Run every step up to and including the PDF capture.

        Leaves the run in CAPTURING; nothing is charged yet.

        Raises:
            ExportError: Typed failure (see errors module)
        """
        tag = f"[export:{run.export_id[:8]}]"
        try:
            return await self._run(request, run, tag)
        except ExportError as e:
            logger.warning(f"{tag} failed in {run.state.value}: {e.error_code} ({e.message})")
            run.fail(e.error_code)
            raise
        except Exception as e:
            logger.exception(f"{tag} unexpected failure in {run.state.value}: {e}")
            run.fail("INTERNAL_ERROR")
            raise RenderEngineFailure(str(e))

    async def commit_usage(self, result: RenderResult, run: ExportRun) -> int:
        """
        Charge one export for a delivered PDF.

        Returns:
            The account's new count for today

        Raises:
            UsageCommitFailed: The usage write failed
        """
        tag = f"[export:{run.export_id[:8]}]"
        run.advance(ExportState.COMMITTING_USAGE)
        try:
            count = await asyncio.to_thread(self._meter.commit, result.account_id)
        except ExportError as e:
            logger.error(f"{tag} usage commit failed: {e.message}")
            run.fail(e.error_code)
            raise
        run.advance(ExportState.DONE)
        return count

    async def _run(self, request: ExportRequest, run: ExportRun, tag: str) -> RenderResult:
        kind, document_id = parse_export_request(request)

        # AUTHENTICATING
        if not request.bearer_token:
            raise AuthenticationFailed("Missing bearer token")
        try:
            identity = await asyncio.to_thread(self._identity_verifier.verify, request.bearer_token)
        except IdentityVerificationError as e:
            raise AuthenticationFailed(f"Identity verification failed: {e.error_code}")

        account = await asyncio.to_thread(self._accounts.get_account, identity.account_id)
        if account is None:
            account = Account(account_id=identity.account_id, email=identity.email)

        # RESOLVING_ENTITLEMENT
        run.advance(ExportState.RESOLVING_ENTITLEMENT)
        entitlement = self._resolver.resolve(account, identity.email)
        logger.info(
            f"{tag} {kind.value}/{document_id} for {account.account_id}: "
            f"plan={entitlement.plan.value} limit={entitlement.export_limit_per_day}"
        )

        document = await asyncio.to_thread(self._documents.get_document, kind, document_id)
        if document is None:
            raise DocumentNotFound(f"{kind.value} {document_id} not found")
        if entitlement.plan != Plan.ADMIN and document.owner_id != account.account_id:
            raise DocumentAccessDenied(f"{account.account_id} does not own {kind.value} {document_id}")

        # CHECKING_QUOTA
        run.advance(ExportState.CHECKING_QUOTA)
        self._meter.check_quota(account, entitlement)

        # MINTING_TICKET
        run.advance(ExportState.MINTING_TICKET)
        ticket = self._codec.mint(
            kind,
            document_id,
            ttl_seconds=TICKET_TTL_SECONDS,
            watermark=entitlement.watermark_enabled,
        )
        print_url = self.build_print_url(ticket)

        pdf_bytes = await self._render(print_url, run, tag)

        return RenderResult(pdf_bytes=pdf_bytes, filename=kind.filename, account_id=account.account_id)

    async def _render(self, print_url: str, run: ExportRun, tag: str) -> bytes:
        """LAUNCHING_RENDER -> NAVIGATING -> CAPTURING inside one browser session."""
        timeout_ms = self._render_timeout_seconds * 1000
        wall_clock = self._render_timeout_seconds + _TIMEOUT_GRACE_SECONDS

        run.advance(ExportState.LAUNCHING_RENDER)
        try:
            async with self._engine.session() as page:
                run.advance(ExportState.NAVIGATING)
                logger.info(f"{tag} navigating to {print_url.split('?')[0]}")
                navigation = await asyncio.wait_for(page.navigate(print_url, timeout_ms), wall_clock)
                await self._check_rendered_page(page, navigation, tag)

                run.advance(ExportState.CAPTURING)
                pdf_bytes = await asyncio.wait_for(page.pdf(), wall_clock)
        except ExportError:
            raise
        except (EngineTimeout, asyncio.TimeoutError) as e:
            logger.error(f"{tag} render timed out after {self._render_timeout_seconds}s: {e}")
            raise RenderTimeout()
        except EngineError as e:
            logger.error(f"{tag} headless engine failed: {e}")
            raise RenderEngineFailure()
        except Exception as e:
            logger.exception(f"{tag} render failed: {e}")
            raise RenderEngineFailure()

        if not pdf_bytes:
            logger.error(f"{tag} capture returned no bytes")
            raise RenderEngineFailure()

        logger.info(f"{tag} captured {len(pdf_bytes)} byte PDF")
        return pdf_bytes

    async def _check_rendered_page(self, page: RenderPage, navigation: NavigationResult, tag: str) -> None:
        """
        Reject pages that are not the requested document.

        A 200 navigation does not mean the gate accepted the ticket, so the
        structured render status (header, then marker element) decides. Pages
        without one fall back to searching the text for failure sentinels.
        """
        status = navigation.headers.get(RENDER_STATUS_HEADER.lower())
        if not status:
            status = await page.marker(RENDER_STATUS_META)

        if status:
            if status == RENDER_STATUS_OK:
                return
            logger.warning(f"{tag} render view reported '{status}'")
            if status == "not-found":
                raise DocumentNotFound("Document disappeared before rendering")
            raise RenderAuthorizationFailed(f"Render view reported {status}")

        if navigation.status is not None and navigation.status >= 400:
            logger.error(f"{tag} render view returned HTTP {navigation.status}")
            raise RenderEngineFailure()

        text = (await page.text_content() or "").lower()
        for sentinel in SENTINEL_MARKERS:
            if sentinel in text:
                logger.warning(f"{tag} render view contains failure marker '{sentinel}'")
                raise RenderAuthorizationFailed(f"Render view contains '{sentinel}'")
