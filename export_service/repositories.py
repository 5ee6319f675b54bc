"""
Account and Document Repositories

Abstract interfaces for the two storage collaborators of the export core,
with MongoDB implementations.

- Accounts: plan, admin override and the daily export counter. Usage writes
  are compare-and-set so a concurrent commit can never be lost.
- Documents: read-only lookup of generated documents by (kind, id).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError

from .models import Account, Document, DocumentKind, UsageRecord

logger = logging.getLogger(__name__)

# Collections searched per kind, in order
DOCUMENT_COLLECTIONS: Dict[DocumentKind, List[str]] = {
    DocumentKind.RESUME: ["builders"],
    DocumentKind.COVER_LETTER: ["coverLetters", "cover_letters"],
    DocumentKind.INTERVIEW_GUIDE: ["interviewGuides", "interview_guides"],
}

_OWNER_FIELDS = ("ownerId", "uid", "userId")


def usage_from_doc(raw: Any) -> UsageRecord:
    """Parse a stored usage value leniently; malformed counts read as zero."""
    if not isinstance(raw, dict):
        return UsageRecord(stored=raw)
    date = raw.get("date") if isinstance(raw.get("date"), str) else None
    count = raw.get("count")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        count = 0
    return UsageRecord(date=date, count=count, stored=raw)


def account_from_doc(doc: Dict[str, Any]) -> Account:
    """Build an Account snapshot from a stored user document."""
    return Account(
        account_id=str(doc["_id"]),
        email=doc.get("email"),
        plan=doc.get("plan"),
        is_admin_override=doc.get("isAdminOverride") is True,
        usage=usage_from_doc(doc.get("usage")),
    )


def document_from_doc(kind: DocumentKind, document_id: str, doc: Dict[str, Any]) -> Document:
    """Build a Document from a stored record."""
    owner_id = None
    for key in _OWNER_FIELDS:
        if doc.get(key):
            owner_id = str(doc[key])
            break
    body = {k: v for k, v in doc.items() if k != "_id"}
    return Document(kind=kind, document_id=document_id, owner_id=owner_id, body=body)


def _id_candidates(document_id: str) -> List[Any]:
    """Match both string ids and ObjectIds."""
    candidates: List[Any] = [document_id]
    if ObjectId.is_valid(document_id):
        candidates.append(ObjectId(document_id))
    return candidates


class AccountRepositoryInterface(ABC):
    """Abstract interface for account lookups and usage writes."""

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]:
        """
        Load an account snapshot.

        Args:
            account_id: Identity-provider account id

        Returns:
            Account or None if the account has never been stored
        """
        pass

    @abstractmethod
    def compare_and_set_usage(
        self,
        account_id: str,
        expected: UsageRecord,
        new_usage: UsageRecord,
    ) -> bool:
        """
        Replace the stored usage only if it still equals expected.stored.

        Args:
            account_id: Account to update
            expected: Usage snapshot read before computing new_usage
            new_usage: Usage to persist

        Returns:
            True if the write was applied, False if the stored value changed
        """
        pass


class DocumentStoreInterface(ABC):
    """Abstract interface for document lookups."""

    @abstractmethod
    def get_document(self, kind: DocumentKind, document_id: str) -> Optional[Document]:
        """
        Fetch a document by kind and id.

        Returns:
            Document or None if absent
        """
        pass


class _MongoRepository:
    """Shared lazily-created MongoClient for the service's repositories."""

    _client: Optional[MongoClient] = None

    def __init__(self, mongodb_uri: str, database: str):
        if not mongodb_uri:
            raise ValueError("MongoDB URI is required")
        self._mongodb_uri = mongodb_uri
        self._database = database

    def _get_client(self) -> MongoClient:
        """Get or create the MongoDB client (singleton)."""
        if _MongoRepository._client is None:
            _MongoRepository._client = MongoClient(self._mongodb_uri)
            logger.info("Created new MongoDB client for export repositories")
        return _MongoRepository._client

    def _get_collection(self, name: str):
        return self._get_client()[self._database][name]

    @classmethod
    def reset_connection(cls) -> None:
        """Reset the MongoDB client connection."""
        if _MongoRepository._client is not None:
            _MongoRepository._client.close()
            _MongoRepository._client = None
            logger.info("Export repository connection reset")


class MongoAccountRepository(_MongoRepository, AccountRepositoryInterface):
    """MongoDB implementation of the account repository."""

    def __init__(self, mongodb_uri: str, database: str, collection: str = "users"):
        super().__init__(mongodb_uri, database)
        self._collection_name = collection

    def get_account(self, account_id: str) -> Optional[Account]:
        doc = self._get_collection(self._collection_name).find_one({"_id": account_id})
        if not doc:
            return None
        return account_from_doc(doc)

    def compare_and_set_usage(
        self,
        account_id: str,
        expected: UsageRecord,
        new_usage: UsageRecord,
    ) -> bool:
        collection = self._get_collection(self._collection_name)
        # {"usage": None} also matches a missing field, which lets a first
        # commit upsert the account document.
        filter_query = {"_id": account_id, "usage": expected.stored}
        update = {
            "$set": {
                "usage": {"date": new_usage.date, "count": new_usage.count},
                "usageUpdatedAt": datetime.utcnow(),
            }
        }
        try:
            result = collection.update_one(
                filter_query,
                update,
                upsert=expected.stored is None,
            )
        except DuplicateKeyError:
            # Document exists with a different usage value: lost the race
            return False
        return result.matched_count > 0 or result.upserted_id is not None


class MongoDocumentStore(_MongoRepository, DocumentStoreInterface):
    """MongoDB implementation of the document store."""

    def get_document(self, kind: DocumentKind, document_id: str) -> Optional[Document]:
        for collection_name in DOCUMENT_COLLECTIONS[kind]:
            doc = self._get_collection(collection_name).find_one(
                {"_id": {"$in": _id_candidates(document_id)}}
            )
            if doc:
                return document_from_doc(kind, document_id, doc)
        return None


# Singleton instances
_account_repository_instance: Optional[AccountRepositoryInterface] = None
_document_store_instance: Optional[DocumentStoreInterface] = None


def get_account_repository() -> AccountRepositoryInterface:
    """Get the account repository instance (singleton)."""
    global _account_repository_instance

    if _account_repository_instance is None:
        from .config import get_settings

        settings = get_settings()
        _account_repository_instance = MongoAccountRepository(
            settings.mongodb_uri,
            settings.mongo_db_name,
            settings.accounts_collection,
        )
        logger.info("Initialized account repository")

    return _account_repository_instance


def get_document_store() -> DocumentStoreInterface:
    """Get the document store instance (singleton)."""
    global _document_store_instance

    if _document_store_instance is None:
        from .config import get_settings

        settings = get_settings()
        _document_store_instance = MongoDocumentStore(settings.mongodb_uri, settings.mongo_db_name)
        logger.info("Initialized document store")

    return _document_store_instance


def reset_repositories() -> None:
    """Reset the repository singletons and the shared client."""
    global _account_repository_instance, _document_store_instance

    _MongoRepository.reset_connection()
    _account_repository_instance = None
    _document_store_instance = None
