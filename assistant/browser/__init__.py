"""
Browser-side page handling: cleaning, verification, classification, link
filtering and the bounded URL resolver.
"""

from .page_classifier import classify_page, is_job_page_type
from .url_resolver import ResolveResult, UrlResolver

__all__ = ["classify_page", "is_job_page_type", "ResolveResult", "UrlResolver"]
