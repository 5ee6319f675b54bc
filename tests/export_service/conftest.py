"""
Pytest fixtures for export service tests.

Provides in-memory account/document stores, a fake identity verifier and a
fake headless engine whose page renders through the real gate, so the whole
export path runs without MongoDB, Firebase or Chromium.
"""

import os
import re
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlparse

# IMPORTANT: Set environment variables BEFORE any imports from export_service
# so ExportSettings validates when the app module is first loaded.
os.environ["ENVIRONMENT"] = "development"
os.environ["PDF_SIGNING_SECRET"] = "test-signing-secret-0123456789-abcdefXYZ"
os.environ["PUBLIC_BASE_URL"] = "http://export.test"
os.environ["ADMIN_EMAILS"] = "owner@careermind.ai"

import pytest

from export_service.browser import HeadlessEngine, NavigationResult, RenderPage
from export_service.entitlements import EntitlementResolver
from export_service.errors import IdentityVerificationError
from export_service.gate import RenderAuthorizationGate
from export_service.identity import IdentityVerifier
from export_service.models import DocumentKind, Document, VerifiedIdentity
from export_service.orchestrator import RenderOrchestrator
from export_service.repositories import (
    AccountRepositoryInterface,
    DocumentStoreInterface,
    account_from_doc,
)
from export_service.tickets import TicketCodec
from export_service.usage import UsageMeter

TEST_SECRET = os.environ["PDF_SIGNING_SECRET"]
FAKE_PDF = b"%PDF-1.4 fake export"


class FrozenClock:
    """Settable unix clock."""

    def __init__(self, now: float = 1_790_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


class InMemoryAccountRepository(AccountRepositoryInterface):
    """Account store keeping raw user documents in a dict."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.cas_calls = 0
        self._lock = threading.Lock()

    def add(self, account_id: str, **fields) -> None:
        self.docs[account_id] = {"_id": account_id, **fields}

    def get_account(self, account_id):
        doc = self.docs.get(account_id)
        return account_from_doc(dict(doc)) if doc else None

    def compare_and_set_usage(self, account_id, expected, new_usage):
        with self._lock:
            self.cas_calls += 1
            doc = self.docs.setdefault(account_id, {"_id": account_id})
            if doc.get("usage") != expected.stored:
                return False
            doc["usage"] = {"date": new_usage.date, "count": new_usage.count}
            return True

    def usage_of(self, account_id: str) -> Optional[Dict[str, Any]]:
        return self.docs.get(account_id, {}).get("usage")


class InMemoryDocumentStore(DocumentStoreInterface):
    """Document store that records every lookup."""

    def __init__(self):
        self.documents: Dict[tuple, Document] = {}
        self.lookups: List[tuple] = []

    def add(self, kind: DocumentKind, document_id: str, owner_id: Optional[str], body: Dict[str, Any]) -> None:
        self.documents[(kind, document_id)] = Document(kind, document_id, owner_id, body)

    def delete(self, kind: DocumentKind, document_id: str) -> None:
        self.documents.pop((kind, document_id), None)

    def get_document(self, kind, document_id):
        self.lookups.append((kind, document_id))
        return self.documents.get((kind, document_id))


class FakeIdentityVerifier(IdentityVerifier):
    """Maps known tokens to identities."""

    def __init__(self, tokens: Dict[str, VerifiedIdentity]):
        self._tokens = tokens

    def verify(self, token):
        if token not in self._tokens:
            raise IdentityVerificationError("Unknown token", error_code="invalid_token")
        return self._tokens[token]


class GateBackedPage(RenderPage):
    """Page that 'navigates' by calling the gate with the URL's kind and query."""

    def __init__(self, gate: RenderAuthorizationGate, pdf_bytes: bytes = FAKE_PDF, send_header: bool = True):
        self._gate = gate
        self._pdf_bytes = pdf_bytes
        self._send_header = send_header
        self.navigated_urls: List[str] = []
        self.html = ""
        self.captures = 0
        self.before_navigate = None

    async def navigate(self, url, timeout_ms):
        if self.before_navigate:
            self.before_navigate()
        self.navigated_urls.append(url)
        parsed = urlparse(url)
        kind = parsed.path.rsplit("/", 1)[-1]
        response = self._gate.render_view(kind, dict(parse_qsl(parsed.query)))
        self.html = response.html
        headers = {"x-render-status": response.render_status} if self._send_header else {}
        return NavigationResult(status=200, headers=headers)

    async def marker(self, name):
        match = re.search(rf'<meta name="{name}" content="([^"]*)"', self.html)
        return match.group(1) if match else None

    async def text_content(self):
        return re.sub(r"<[^>]+>", " ", self.html)

    async def pdf(self):
        self.captures += 1
        return self._pdf_bytes


class FakeEngine(HeadlessEngine):
    """Counts session opens/closes to check teardown on every path."""

    def __init__(self, page: RenderPage):
        self.page = page
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def session(self):
        self.opened += 1
        try:
            yield self.page
        finally:
            self.closed += 1


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def codec(clock):
    return TicketCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def accounts():
    repo = InMemoryAccountRepository()
    repo.add("free-user", email="free@example.com", plan="FREE")
    repo.add("paid-user", email="paid@example.com", plan="PAID")
    repo.add("admin-user", email="admin@example.com", plan="ADMIN")
    # Stored e-mail is on the allow-list but the token carries no verified e-mail
    repo.add("squatter", email="owner@careermind.ai", plan="FREE")
    return repo


@pytest.fixture
def documents():
    store = InMemoryDocumentStore()
    store.add(DocumentKind.RESUME, "res-1", "free-user", {"result": {"headline": "Data Engineer"}})
    store.add(DocumentKind.COVER_LETTER, "cl-1", "free-user", {"content": "Dear team,\nI am applying."})
    store.add(DocumentKind.INTERVIEW_GUIDE, "ig-1", "paid-user", {"content": "Behavioral:\n- Tell me about you"})
    for i in range(5):
        store.add(DocumentKind.RESUME, f"paid-res-{i}", "paid-user", {"result": {"headline": f"Resume {i}"}})
    return store


@pytest.fixture
def identity():
    return FakeIdentityVerifier({
        "free-token": VerifiedIdentity("free-user", "free@example.com"),
        "paid-token": VerifiedIdentity("paid-user", "paid@example.com"),
        "admin-token": VerifiedIdentity("admin-user", "admin@example.com"),
        "new-token": VerifiedIdentity("new-user", "new@example.com"),
        "squatter-token": VerifiedIdentity("squatter", None),
        "owner-token": VerifiedIdentity("owner-user", "owner@careermind.ai"),
    })


@pytest.fixture
def meter(accounts):
    return UsageMeter(
        accounts,
        timezone="UTC",
        now=lambda tz: datetime(2026, 10, 19, 12, 0, tzinfo=tz),
    )


@pytest.fixture
def gate(codec, documents):
    return RenderAuthorizationGate(codec, documents, watermark_text="CareerMindAI")


@pytest.fixture
def page(gate):
    return GateBackedPage(gate)


@pytest.fixture
def engine(page):
    return FakeEngine(page)


@pytest.fixture
def orchestrator(identity, accounts, documents, meter, codec, engine):
    return RenderOrchestrator(
        identity_verifier=identity,
        accounts=accounts,
        documents=documents,
        resolver=EntitlementResolver(["owner@careermind.ai"]),
        meter=meter,
        codec=codec,
        engine=engine,
        public_base_url="http://export.test",
        render_timeout_seconds=60,
    )
