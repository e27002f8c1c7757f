"""
RAG Focuser: reduce a cleaned job page to the chunks that matter.

Two phases:
1. Pre-filter: embed every chunk and a fixed job-content query; score each
   chunk by cosine similarity plus a keyword boost and take the top
   candidates.
2. Sequential rank: a FAST model scores candidates one at a time in document
   order, carrying forward a small memory of which core fields were already
   seen.

Kept chunks are reassembled in document order as a minimal focused document.
Any embedding failure degrades to "no focused document"; callers fall back to
the full cleaned HTML.
"""

import html as html_lib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from bs4 import BeautifulSoup, NavigableString, Tag

from assistant.common.config import Config
from assistant.common.errors import EmbeddingError, LLMError
from assistant.common.json_utils import parse_llm_json
from assistant.common.llm_client import CompletionOptions, EmbedOptions, LLMClient
from assistant.common.model_tiers import ModelTier
from assistant.common.types import Chunk, ChunkScore
from assistant.common.utils import collapse_whitespace
from assistant.extraction.prompts import CHUNK_LABELS, RANK_CHUNK_PROMPT

logger = logging.getLogger(__name__)

# ===== CONSTANTS =====

BLOCK_TAGS = {
    "p", "div", "section", "article", "main",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "td", "th", "span",
}
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
LANDMARK_TAGS = {"nav", "footer", "header", "aside"}

MIN_CHUNK_CHARS = 15
MAX_CHUNK_CHARS = 2000

JOB_QUERY = (
    "job title company name location job description responsibilities "
    "requirements qualifications salary compensation benefits apply how to apply"
)

JOB_TERMS = [
    "responsibilities",
    "requirements",
    "qualifications",
    "experience",
    "salary",
    "compensation",
    "benefits",
    "apply",
    "location",
    "remote",
    "hybrid",
    "full-time",
    "part-time",
    "job description",
    "about the role",
    "about us",
    "company",
    "team",
]
KEYWORD_BOOST_STEP = 0.05
KEYWORD_BOOST_CAP = 0.4

PREFILTER_CANDIDATES = 40
KEEP_BUDGET = 30
HARD_KEEP_SCORE = 0.5
SOFT_KEEP_SCORE = 0.3

DEFAULT_IMPORTANCE = 0.3
DEFAULT_LABEL = "GENERAL_JOB_TEXT"
PREVIOUS_CHARS = 400
CURRENT_CHARS = 800
RANK_MAX_TOKENS = 256

LABEL_ADJUSTMENTS = {
    "TITLE": 0.5,
    "COMPANY": 0.5,
    "LOCATION": 0.3,
    "ABOUT": 0.3,
    "RESPONSIBILITIES": 0.2,
    "REQUIREMENTS": 0.2,
    "BENEFITS": 0.15,
    "APPLY_INSTRUCTIONS": 0.15,
    "NAV_OR_FOOTER": -0.4,
    "UNRELATED": -0.4,
}
CONTINUATION_BOOST = 0.15

MEMORY_FLAGS = (
    "has_title",
    "has_company",
    "has_location",
    "has_about_team",
    "has_responsibilities",
    "has_requirements",
)

_SENTENCE = re.compile(r"[^.!?]+[.!?]+\s*|[^.!?]+$")


@dataclass
class FocusResult:
    """Outcome of the focus stage. ``focused_html`` is None when it degraded."""

    focused_html: Optional[str]
    chunks: List[Chunk] = field(default_factory=list)
    scores: List[ChunkScore] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def kept_count(self) -> int:
        return sum(1 for s in self.scores if s.keep)


# ===== CHUNKING =====

def _landmark(element: Tag) -> Optional[str]:
    for parent in element.parents:
        if parent.name in LANDMARK_TAGS:
            return parent.name
    return None


def _split_long(text: str) -> List[str]:
    """Split an oversized block on sentence boundaries, packing sentences up to the max size."""
    pieces: List[str] = []
    current = ""
    for match in _SENTENCE.finditer(text):
        sentence = match.group(0).strip()
        if not sentence:
            continue
        while len(sentence) > MAX_CHUNK_CHARS:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(sentence[:MAX_CHUNK_CHARS])
            sentence = sentence[MAX_CHUNK_CHARS:].strip()
        candidate = f"{current} {sentence}".strip()
        if len(candidate) > MAX_CHUNK_CHARS:
            pieces.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        pieces.append(current)
    return [p for p in pieces if len(p) >= MIN_CHUNK_CHARS]


def chunk_html(html: str) -> List[Chunk]:
    """
    Split HTML into block-level text chunks in document order.

    Args:
        html: Cleaned page HTML

    Returns:
        Chunks with ids ``c0, c1, ...`` and contiguous document indexes
    """
    soup = BeautifulSoup(html or "", "html.parser")
    texts: List[tuple] = []

    def walk(node: Tag) -> None:
        for child in node.children:
            if isinstance(child, NavigableString) or not isinstance(child, Tag):
                continue
            name = (child.name or "").lower()
            if name in BLOCK_TAGS:
                text = collapse_whitespace(child.get_text(" "))
                if MIN_CHUNK_CHARS <= len(text) <= MAX_CHUNK_CHARS:
                    tag = name if name in HEADING_TAGS else (_landmark(child) or name)
                    texts.append((text, tag))
                    continue
                if len(text) > MAX_CHUNK_CHARS:
                    tag = _landmark(child) or name
                    texts.extend((piece, tag) for piece in _split_long(text))
                    continue
            walk(child)

    root = soup.body or soup
    walk(root)

    if not texts:
        full_text = collapse_whitespace(root.get_text(" "))
        if len(full_text) >= MIN_CHUNK_CHARS:
            texts.append((full_text[:MAX_CHUNK_CHARS], None))

    return [
        Chunk(id=f"c{i}", text=text, document_index=i, source_tag=tag)
        for i, (text, tag) in enumerate(texts)
    ]


# ===== PRE-FILTER SCORING =====

def keyword_boost(text: str) -> float:
    """+0.05 per job-related term present, capped at 0.4."""
    lower = (text or "").lower()
    boost = sum(KEYWORD_BOOST_STEP for term in JOB_TERMS if term in lower)
    return min(boost, KEYWORD_BOOST_CAP)


def _cosine_similarity(vec: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between a vector and each row of a matrix.

    Args:
        vec: Query vector (D,)
        matrix: Embedding matrix (N, D)

    Returns:
        Similarities array (N,)
    """
    vec_norm = vec / (np.linalg.norm(vec) + 1e-8)
    matrix_norms = np.linalg.norm(matrix, axis=1, keepdims=True) + 1e-8
    return np.dot(matrix / matrix_norms, vec_norm)


def score_chunks(
    chunks: List[Chunk],
    embeddings: List[List[float]],
    query_embedding: List[float],
    top_k: int = 20,
    min_score: float = 0.2,
) -> List[ChunkScore]:
    """
    Score chunks by similarity to the query embedding plus keyword boost.

    ``keep`` marks the top ``top_k`` chunks scoring at least ``min_score``.

    Returns:
        One ChunkScore per chunk, in document order
    """
    if not chunks:
        return []

    query = np.asarray(query_embedding, dtype=float)
    similarities = np.zeros(len(chunks))
    if embeddings and query.size:
        matrix = np.asarray(embeddings, dtype=float)
        if matrix.ndim == 2 and matrix.shape == (len(chunks), query.size):
            similarities = _cosine_similarity(query, matrix)
        else:
            logger.warning(f"Embedding shape {matrix.shape} does not match {len(chunks)} chunks; using keywords only")

    scores = [
        ChunkScore(chunk_id=chunk.id, score=float(similarities[i]) + keyword_boost(chunk.text))
        for i, chunk in enumerate(chunks)
    ]

    ranked = sorted(range(len(scores)), key=lambda i: scores[i].score, reverse=True)
    kept = 0
    for i in ranked:
        if kept >= top_k:
            break
        if scores[i].score >= min_score:
            scores[i].keep = True
            kept += 1
    return scores


# ===== SEQUENTIAL LLM RANKING =====

def _empty_memory() -> Dict[str, bool]:
    return {flag: False for flag in MEMORY_FLAGS}


def _merge_memory(memory: Dict[str, bool], update) -> Dict[str, bool]:
    """Flags only ever turn on."""
    if not isinstance(update, dict):
        return memory
    return {flag: memory[flag] or update.get(flag) is True for flag in MEMORY_FLAGS}


def _adjusted_score(importance: float, label: str, continuation: bool) -> float:
    score = importance + LABEL_ADJUSTMENTS.get(label, 0.0)
    if continuation:
        score += CONTINUATION_BOOST
    return max(0.0, min(1.0, score))


async def _rank_one(llm: LLMClient, chunk: Chunk, previous: str, memory: Dict[str, bool]) -> dict:
    prompt = RANK_CHUNK_PROMPT.format(
        memory=json.dumps(memory),
        previous=previous or "(none)",
        current=chunk.text[:CURRENT_CHARS],
    )
    try:
        response = await llm.complete(
            prompt,
            ModelTier.FAST,
            CompletionOptions(format="json", temperature=Config.ANALYTICAL_TEMPERATURE, max_tokens=RANK_MAX_TOKENS),
        )
        parsed = parse_llm_json(response)
    except (LLMError, ValueError) as e:
        logger.debug(f"Chunk {chunk.id} ranking failed, using defaults: {e}")
        return {"importance": DEFAULT_IMPORTANCE, "label": DEFAULT_LABEL, "continuation": False}

    importance = parsed.get("importance")
    if not isinstance(importance, (int, float)) or isinstance(importance, bool):
        importance = DEFAULT_IMPORTANCE
    label = str(parsed.get("label") or "").strip().upper()
    return {
        "importance": max(0.0, min(1.0, float(importance))),
        "label": label if label in CHUNK_LABELS else DEFAULT_LABEL,
        "continuation": parsed.get("continuation") is True,
        "memory": parsed.get("memory"),
    }


def _is_chrome(chunk: Chunk, label: Optional[str]) -> bool:
    return label == "NAV_OR_FOOTER" or chunk.source_tag in LANDMARK_TAGS


def decide_keep(candidates: List[Chunk], scores: List[ChunkScore], budget: int = KEEP_BUDGET) -> None:
    """
    Apply the keep rules to LLM-ranked scores in place.

    1. Hard-keep chunks at or above 0.5 that are not navigational chrome.
    2. Keep at least one title-like chunk: best TITLE label, else the <h1> chunk.
    3. Fill the remaining budget by descending score from chunks at or above 0.3.
    """
    by_id = {c.id: c for c in candidates}

    for s in scores:
        if s.score >= HARD_KEEP_SCORE and not _is_chrome(by_id[s.chunk_id], s.label):
            s.keep = True

    titles = [s for s in scores if s.label == "TITLE"]
    if not any(s.keep for s in titles):
        if titles:
            max(titles, key=lambda s: s.score).keep = True
        else:
            h1 = next((s for s in scores if by_id[s.chunk_id].source_tag == "h1"), None)
            if h1 is not None:
                h1.keep = True

    kept = sum(1 for s in scores if s.keep)
    for s in sorted(scores, key=lambda s: s.score, reverse=True):
        if kept >= budget:
            break
        if not s.keep and s.score >= SOFT_KEEP_SCORE:
            s.keep = True
            kept += 1


async def rank_chunks_with_llm(
    candidates: List[Chunk],
    llm: LLMClient,
    cancel=None,
) -> List[ChunkScore]:
    """
    Rank candidate chunks one at a time in document order.

    Args:
        candidates: Chunks in document order
        llm: LLM client (FAST tier is used)
        cancel: Optional cancellation token, checked before every call

    Returns:
        ChunkScores with keep decided, in document order
    """
    memory = _empty_memory()
    scores: List[ChunkScore] = []

    for i, chunk in enumerate(candidates):
        if cancel is not None:
            cancel.raise_if_cancelled()
        previous = candidates[i - 1].text[:PREVIOUS_CHARS] if i > 0 else ""
        result = await _rank_one(llm, chunk, previous, memory)
        memory = _merge_memory(memory, result.get("memory"))
        scores.append(ChunkScore(
            chunk_id=chunk.id,
            score=_adjusted_score(result["importance"], result["label"], result["continuation"]),
            label=result["label"],
            importance=result["importance"],
            continuation=result["continuation"],
        ))

    decide_keep(candidates, scores)
    logger.info(f"LLM kept {sum(1 for s in scores if s.keep)}/{len(scores)} candidate chunks")
    return scores


# ===== FOCUSED DOCUMENT =====

def build_focused_content(scores: List[ChunkScore], chunks: List[Chunk]) -> str:
    """Kept chunks as ``<div data-chunk-id>`` blocks, in document order."""
    keep_ids = {s.chunk_id for s in scores if s.keep}
    parts = [
        f'<div data-chunk-id="{c.id}">{html_lib.escape(c.text)}</div>'
        for c in sorted(chunks, key=lambda c: c.document_index)
        if c.id in keep_ids
    ]
    body = "\n".join(parts)
    return f'<html><head><meta charset="utf-8"></head><body>{body}</body></html>'


async def focus_content(html: str, llm: LLMClient, artifacts=None, cancel=None) -> FocusResult:
    """
    Run the full focus pipeline: chunk, embed, pre-score, LLM rank, assemble.

    Args:
        html: Cleaned page HTML
        llm: LLM client providing embeddings and FAST completions
        artifacts: Optional ArtifactStore for chunks/embeddings/scores/focused HTML
        cancel: Optional cancellation token

    Returns:
        FocusResult; ``focused_html`` is None when there is nothing to focus
        or the embedding service failed.

    Raises:
        PipelineStopped: If the run is cancelled while ranking
    """
    chunks = chunk_html(html)
    if not chunks:
        logger.info("No chunks produced; skipping focus")
        return FocusResult(focused_html=None)

    if artifacts is not None:
        artifacts.write_json("chunks.json", [c.to_dict() for c in chunks])

    try:
        vectors = await llm.embed([c.text for c in chunks] + [JOB_QUERY], EmbedOptions(batch_size=8))
    except EmbeddingError as e:
        if "not found" in str(e).lower() or "404" in str(e):
            logger.warning(f"Embedding model {Config.EMBEDDING_MODEL} not available; using full page: {e}")
        else:
            logger.warning(f"Embedding failed; using full page: {e}")
        return FocusResult(focused_html=None, chunks=chunks, error=str(e))

    embeddings, query_embedding = vectors[:-1], vectors[-1]
    if artifacts is not None:
        artifacts.write_json(
            "embeddings.json",
            [{"id": c.id, "embedding": e} for c, e in zip(chunks, embeddings)],
        )

    prescores = score_chunks(chunks, embeddings, query_embedding, top_k=PREFILTER_CANDIDATES, min_score=0.0)
    top_ids = {
        s.chunk_id
        for s in sorted(prescores, key=lambda s: s.score, reverse=True)[:PREFILTER_CANDIDATES]
    }
    candidates = [c for c in chunks if c.id in top_ids]

    ranked = {s.chunk_id: s for s in await rank_chunks_with_llm(candidates, llm, cancel)}
    final: List[ChunkScore] = []
    for pre in prescores:
        llm_score = ranked.get(pre.chunk_id)
        if llm_score is not None:
            final.append(llm_score)
        else:
            final.append(ChunkScore(chunk_id=pre.chunk_id, score=pre.score, keep=False))

    focused = build_focused_content(final, chunks)
    if artifacts is not None:
        text_by_id = {c.id: c.text for c in chunks}
        artifacts.write_json(
            "chunk_scores.json",
            [dict(s.to_dict(), textPreview=text_by_id[s.chunk_id][:120]) for s in final],
        )
        artifacts.write_text("focused_content.html", focused)

    result = FocusResult(focused_html=focused, chunks=chunks, scores=final)
    logger.info(f"Kept {result.kept_count}/{len(chunks)} chunks")
    return result
