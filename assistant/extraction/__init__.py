"""
Extraction: RAG focusing, job detail extraction and listing extraction.
"""

from .job_detail_extractor import extract_job_detail, extract_job_detail_with_retry
from .listing_extractor import extract_jobs_from_html
from .rag_focuser import focus_content

__all__ = [
    "extract_job_detail",
    "extract_job_detail_with_retry",
    "extract_jobs_from_html",
    "focus_content",
]
