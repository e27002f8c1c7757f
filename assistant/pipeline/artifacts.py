"""
Run folder persistence for debugging and re-analysis.

Layout under ``Config.ARTIFACTS_DIR``:

    <user-slug>_<YYYY-MM-DD-HH-MM-SS>/
        raw.html, cleaned.html, metadata.json
        chunks.json, embeddings.json, chunk_scores.json, focused_content.html
        events.json, screenshot.png (hard stops only)

Artifact writes never fail a run: errors are logged and the write is skipped.
"""

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from assistant.common.config import Config
from assistant.common.error_handling import pipeline_operation
from assistant.common.utils import sanitize_path_component

logger = logging.getLogger(__name__)


def _user_slug(user_name: Optional[str]) -> str:
    if not user_name or not user_name.strip():
        return "user"
    slug = re.sub(r"\s+", "-", user_name.strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)[:40]
    return slug or "user"


def run_folder_name(user_name: Optional[str], run_id: str, now: Optional[datetime] = None) -> str:
    """
    Folder name for one run.

    Example:
        >>> run_folder_name("Jane Doe", "abc", datetime(2026, 2, 23, 21, 42, 32))
        'jane-doe_2026-02-23-21-42-32'
        >>> run_folder_name(None, "0f3c9a1e77", datetime(2026, 2, 23, 21, 42, 32))
        'user-0f3c9a1e_2026-02-23-21-42-32'
    """
    now = now or datetime.now(timezone.utc)
    slug = _user_slug(user_name)
    id_part = f"user-{run_id[:8]}" if slug == "user" else slug
    return f"{id_part}_{now.strftime('%Y-%m-%d-%H-%M-%S')}"


class ArtifactStore:
    """
    Writes run artifacts into one folder.

    Args:
        run_folder: Folder name (see run_folder_name)
        root: Root directory (defaults to Config.ARTIFACTS_DIR)
    """

    def __init__(self, run_folder: str, root: Optional[str] = None):
        self.root = Path(root or Config.ARTIFACTS_DIR)
        self.folder = sanitize_path_component(run_folder, max_length=120)
        self.path = self.root / self.folder

    def ensure(self) -> Path:
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path

    def file_path(self, name: str) -> Path:
        return self.ensure() / name

    @pipeline_operation("Artifact write", stage="artifacts")
    def write_text(self, name: str, content: str) -> Optional[str]:
        """Write a text/html artifact; returns its path."""
        target = self.file_path(name)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)
        logger.debug(f"Saved artifact {target}")
        return str(target)

    @pipeline_operation("Artifact write", stage="artifacts")
    def write_json(self, name: str, data: Any) -> Optional[str]:
        """Write a JSON artifact (indented); returns its path."""
        target = self.file_path(name)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        logger.debug(f"Saved artifact {target}")
        return str(target)

    def save_capture(self, raw_html: str, cleaned_html: str, metadata: Dict[str, Any]) -> str:
        """Save raw.html, cleaned.html and metadata.json for the run."""
        self.write_text("raw.html", raw_html)
        self.write_text("cleaned.html", cleaned_html)
        self.write_json("metadata.json", metadata)
        logger.info(f"Run artifacts saved to {self.path}")
        return str(self.path)

    def delete(self) -> None:
        """Remove the run folder. No-op if it does not exist."""
        if self.path.exists():
            shutil.rmtree(self.path)
