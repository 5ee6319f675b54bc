"""
Export Service - FastAPI application for document PDF export.

Endpoints:
- POST /export: authenticated export of a résumé, cover letter or interview
  guide as PDF, subject to the account's daily quota.
- GET /render-view/{kind}: printable page the headless browser navigates to,
  guarded by a signed capability ticket in the query string.
- GET /health: service and Playwright readiness.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .browser import PlaywrightEngine, validate_playwright
from .config import validate_config_on_startup
from .entitlements import EntitlementResolver
from .errors import ExportError, InvalidExportRequest
from .gate import RENDER_STATUS_HEADER, RenderAuthorizationGate
from .identity import FirebaseTokenVerifier, IdentityVerifier
from .models import ExportRequestBody, HealthResponse, RenderResult
from .orchestrator import ExportRequest, ExportRun, RenderOrchestrator
from .repositories import get_account_repository, get_document_store
from .tickets import TicketCodec
from .usage import UsageMeter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate configuration at startup; a missing signing secret stops the process here
settings = validate_config_on_startup()

app = FastAPI(
    title="Export Service",
    version="0.1.0",
    description="PDF export of generated documents with quota and watermark rules"
)

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

security = HTTPBearer(auto_error=False)

# Playwright readiness state
_playwright_ready = False
_playwright_error: Optional[str] = None


# ============================================================================
# Startup Event - Validate Playwright
# ============================================================================

@app.on_event("startup")
async def validate_playwright_on_startup():
    """
    Validate Playwright/Chromium is properly installed on startup.

    The service won't report as healthy if Playwright can't generate PDFs.
    """
    global _playwright_ready, _playwright_error

    logger.info("Export Service starting - validating Playwright installation...")
    _playwright_error = await validate_playwright()
    _playwright_ready = _playwright_error is None
    if not _playwright_ready:
        logger.error(f"Playwright validation failed: {_playwright_error}")
        logger.error("PDF export will not work until this is resolved.")


# ============================================================================
# Component wiring
# ============================================================================

@lru_cache()
def get_ticket_codec() -> TicketCodec:
    """Process-wide ticket codec built from the validated secret."""
    return TicketCodec(settings.pdf_signing_secret)


@lru_cache()
def get_identity_verifier() -> IdentityVerifier:
    """Identity provider verifier (keeps its JWKS cache across requests)."""
    return FirebaseTokenVerifier(settings.firebase_project_id)


@lru_cache()
def get_engine() -> PlaywrightEngine:
    """Process-wide engine so the concurrent render limit is shared by all requests."""
    return PlaywrightEngine(
        headless=settings.playwright_headless,
        max_concurrent=settings.max_concurrent_renders,
    )


def get_gate() -> RenderAuthorizationGate:
    return RenderAuthorizationGate(
        get_ticket_codec(),
        get_document_store(),
        watermark_text=settings.watermark_text,
    )


def get_orchestrator() -> RenderOrchestrator:
    accounts = get_account_repository()
    return RenderOrchestrator(
        identity_verifier=get_identity_verifier(),
        accounts=accounts,
        documents=get_document_store(),
        resolver=EntitlementResolver(settings.admin_email_set),
        meter=UsageMeter(accounts, timezone=settings.usage_timezone),
        codec=get_ticket_codec(),
        engine=get_engine(),
        public_base_url=settings.public_base_url,
        render_timeout_seconds=settings.render_timeout_seconds,
    )


# ============================================================================
# Error handling
# ============================================================================

@app.exception_handler(ExportError)
async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
    """Convert typed export failures into structured JSON responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are client errors (400), not 422s."""
    error = InvalidExportRequest("Request body must be JSON with documentKind and documentId")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ============================================================================
# Health Check Endpoint
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint for container orchestration.

    Returns HTTP 503 if Playwright validation failed on startup. Reports how
    many render slots are in use.
    """
    engine = get_engine()
    if not _playwright_ready:
        raise HTTPException(
            status_code=503,
            detail={
                "status": "unhealthy",
                "timestamp": datetime.utcnow().isoformat(),
                "playwright_ready": False,
                "playwright_error": _playwright_error,
                "active_renders": engine.active_sessions,
                "max_concurrent": engine.max_concurrent,
                "message": "Export service is unhealthy - Playwright/Chromium not available"
            }
        )

    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        playwright_ready=True,
        playwright_error=None,
        active_renders=engine.active_sessions,
        max_concurrent=engine.max_concurrent,
    )


# ============================================================================
# Export Endpoints
# ============================================================================

async def deliver_and_commit(
    orchestrator: RenderOrchestrator,
    result: RenderResult,
    run: ExportRun,
) -> AsyncIterator[bytes]:
    """
    Stream the PDF, then charge the export.

    The generator only resumes past the yield once the server accepted the
    body; a client that disconnects first closes it there and is not charged.
    Headers are already sent when the commit runs, so a failed commit can only
    be logged.
    """
    yield result.pdf_bytes
    try:
        await orchestrator.commit_usage(result, run)
    except ExportError as e:
        logger.error(f"[export:{run.export_id[:8]}] PDF delivered but usage not recorded: {e.error_code}")


@app.post("/export")
async def export_document(
    body: ExportRequestBody,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    orchestrator: RenderOrchestrator = Depends(get_orchestrator),
):
    """
    Export a stored document as PDF.

    Args:
        body: documentKind and documentId
        credentials: Identity-provider bearer token

    Returns:
        StreamingResponse with PDF binary data; usage is committed after the
        body was sent

    Raises:
        ExportError: 400/401/402/403/404/500, rendered by export_error_handler
    """
    request = ExportRequest(
        document_kind=body.documentKind,
        document_id=body.documentId,
        bearer_token=credentials.credentials if credentials else None,
    )
    run = ExportRun()
    result = await orchestrator.render(request, run)

    return StreamingResponse(
        deliver_and_commit(orchestrator, result, run),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "no-store",
        }
    )


@app.get("/render-view/{kind}", response_class=HTMLResponse)
def render_view(
    kind: str,
    request: Request,
    gate: RenderAuthorizationGate = Depends(get_gate),
):
    """
    Printable view for the headless browser.

    The capability ticket in the query string is the only credential. Errors
    render as normal HTML pages; the outcome is in the X-Render-Status header
    and the render-status meta element.
    """
    response = gate.render_view(kind, request.query_params)
    return HTMLResponse(
        content=response.html,
        headers={
            RENDER_STATUS_HEADER: response.render_status,
            "Cache-Control": "no-store",
            "X-Robots-Tag": "noindex",
            "Referrer-Policy": "no-referrer",
        },
    )
