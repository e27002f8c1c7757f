"""
Company identity resolution and the per-company dossier (store, research
and reuse-or-research builder).
"""

from .dossier import CORE_FIELDS, DossierMemory, DossierRecord, merge_extraction
from .dossier_builder import DossierBuilder
from .identity_resolver import CompanyResolution, resolve_company_identity

__all__ = [
    "CORE_FIELDS",
    "DossierMemory",
    "DossierRecord",
    "merge_extraction",
    "DossierBuilder",
    "CompanyResolution",
    "resolve_company_identity",
]
