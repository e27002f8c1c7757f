"""
Company Dossier Repository

Repository interface for the company_dossiers collection. One document per
company_key (lower-cased normalized name) holding the DossierRecord.

A MongoDB implementation is used when MONGODB_URI is configured; otherwise
an in-memory store keeps dossiers for the life of the process.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from assistant.common.config import Config
from assistant.company.dossier import DossierRecord

logger = logging.getLogger(__name__)


class CompanyDossierRepositoryInterface(ABC):
    """Abstract interface for the company dossier store."""

    @abstractmethod
    def find(self, company_key: str, domain: Optional[str] = None) -> Optional[DossierRecord]:
        """
        Find a dossier by normalized name, falling back to the domain hint.

        Args:
            company_key: Normalized company name (lowercase, suffixes stripped)
            domain: Optional company domain

        Returns:
            DossierRecord or None
        """
        pass

    @abstractmethod
    def upsert(self, record: DossierRecord) -> bool:
        """
        Insert or replace the dossier for ``record.company_key``.

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    def ensure_indexes(self) -> None:
        pass


class MongoCompanyDossierRepository(CompanyDossierRepositoryInterface):
    """MongoDB implementation of CompanyDossierRepository."""

    _client: Optional[MongoClient] = None

    def __init__(
        self,
        mongodb_uri: Optional[str] = None,
        database: Optional[str] = None,
        collection: str = "company_dossiers",
    ):
        self._mongodb_uri = mongodb_uri or Config.MONGODB_URI
        self._database = database or Config.MONGODB_DATABASE
        self._collection_name = collection

        if not self._mongodb_uri:
            raise ValueError("MongoDB URI is required")

    def _get_client(self) -> MongoClient:
        """Get or create the MongoDB client (singleton)."""
        if MongoCompanyDossierRepository._client is None:
            MongoCompanyDossierRepository._client = MongoClient(self._mongodb_uri)
            logger.info("Created new MongoDB client for company_dossiers repository")
        return MongoCompanyDossierRepository._client

    def _get_collection(self):
        client = self._get_client()
        return client[self._database][self._collection_name]

    @classmethod
    def reset_connection(cls) -> None:
        """Reset the MongoDB client connection."""
        if cls._client is not None:
            cls._client.close()
            cls._client = None
            logger.info("Company dossier repository connection reset")

    def find(self, company_key: str, domain: Optional[str] = None) -> Optional[DossierRecord]:
        collection = self._get_collection()
        doc = collection.find_one({"company_key": company_key})
        if doc is None and domain:
            doc = collection.find_one({"domain": domain})
        return DossierRecord.from_document(doc) if doc else None

    def upsert(self, record: DossierRecord) -> bool:
        try:
            collection = self._get_collection()
            collection.update_one(
                {"company_key": record.company_key},
                {"$set": record.to_document()},
                upsert=True,
            )
            return True
        except PyMongoError as e:
            logger.error(f"Error upserting dossier for {record.company_key}: {e}")
            return False

    def ensure_indexes(self) -> None:
        try:
            collection = self._get_collection()
            collection.create_index("company_key", unique=True, background=True)
            collection.create_index("domain", background=True)
            logger.info("Company dossier indexes ensured")
        except PyMongoError as e:
            logger.warning(f"Error creating company dossier indexes: {e}")


class InMemoryCompanyDossierRepository(CompanyDossierRepositoryInterface):
    """Process-local dossier store for runs without MongoDB and for tests."""

    def __init__(self):
        self._records: Dict[str, DossierRecord] = {}

    def find(self, company_key: str, domain: Optional[str] = None) -> Optional[DossierRecord]:
        record = self._records.get(company_key)
        if record is None and domain:
            record = next((r for r in self._records.values() if r.domain == domain), None)
        return record.model_copy(deep=True) if record else None

    def upsert(self, record: DossierRecord) -> bool:
        self._records[record.company_key] = record.model_copy(deep=True)
        return True

    def ensure_indexes(self) -> None:
        pass


# Singleton instance
_dossier_repository_instance: Optional[CompanyDossierRepositoryInterface] = None


def get_company_dossier_repository() -> CompanyDossierRepositoryInterface:
    """
    Get the dossier repository instance (singleton).

    Returns:
        MongoCompanyDossierRepository when MONGODB_URI is set, else the
        in-memory implementation
    """
    global _dossier_repository_instance

    if _dossier_repository_instance is None:
        if Config.MONGODB_URI:
            _dossier_repository_instance = MongoCompanyDossierRepository()
            logger.info("Initialized MongoDB company dossier repository")
        else:
            _dossier_repository_instance = InMemoryCompanyDossierRepository()
            logger.info("MONGODB_URI not set; using in-memory company dossier repository")

    return _dossier_repository_instance


def reset_company_dossier_repository() -> None:
    """Reset the repository singleton."""
    global _dossier_repository_instance

    if isinstance(_dossier_repository_instance, MongoCompanyDossierRepository):
        MongoCompanyDossierRepository.reset_connection()

    _dossier_repository_instance = None
    logger.info("Company dossier repository singleton reset")
