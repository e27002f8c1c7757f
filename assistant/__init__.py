"""
Application Assistant

Single-URL pipeline: open a job page in a real browser, find the actual job
posting, extract its details and build a dossier on the hiring company.
"""

from version import __version__

__all__ = ["__version__"]
