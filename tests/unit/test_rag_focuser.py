"""
Unit tests for assistant/extraction/rag_focuser.py

Tests the focus stage:
- Block-level chunking in document order
- Embedding pre-filter scoring with keyword boost
- Keep rules after LLM ranking
- End-to-end focus_content with a fake LLM, including degradation
"""

import json
from pathlib import Path

import pytest

from assistant.common.config import Config
from assistant.common.errors import PipelineStopped
from assistant.common.types import Chunk, ChunkScore
from assistant.extraction.rag_focuser import (
    MAX_CHUNK_CHARS,
    build_focused_content,
    chunk_html,
    decide_keep,
    focus_content,
    keyword_boost,
    score_chunks,
)
from assistant.pipeline.artifacts import ArtifactStore
from assistant.pipeline.run_context import CancellationToken


JOB_PAGE = """
<html><body>
  <h1>Senior Backend Engineer</h1>
  <p>We build payment infrastructure for small businesses.</p>
  <p>ok</p>
  <footer><p>Copyright 2026 Acme Inc. All rights reserved.</p></footer>
</body></html>
"""


def _rank_reply(importance, label, continuation=False, memory=None):
    return json.dumps({
        "importance": importance,
        "label": label,
        "continuation": continuation,
        "memory": memory or {},
    })


# ===== TESTS: Chunking =====

class TestChunkHtml:
    """Tests for chunk_html."""

    def test_chunks_in_document_order(self):
        """Block elements become chunks with sequential ids and indexes."""
        chunks = chunk_html(JOB_PAGE)

        assert [c.id for c in chunks] == ["c0", "c1", "c2"]
        assert [c.document_index for c in chunks] == [0, 1, 2]
        assert chunks[0].text == "Senior Backend Engineer"

    def test_short_blocks_dropped(self):
        """Blocks under the minimum length are not chunks."""
        texts = [c.text for c in chunk_html(JOB_PAGE)]
        assert "ok" not in texts

    def test_source_tags(self):
        """Headings keep their tag; blocks inside landmarks take the landmark."""
        chunks = chunk_html(JOB_PAGE)

        assert chunks[0].source_tag == "h1"
        assert chunks[1].source_tag == "p"
        assert chunks[2].source_tag == "footer"

    def test_outermost_block_is_one_chunk(self):
        """A block holding nested blocks is chunked once, at the outermost level."""
        html = "<body><div><p>First paragraph of text.</p><p>Second paragraph of text.</p></div></body>"
        chunks = chunk_html(html)

        assert len(chunks) == 1
        assert chunks[0].text == "First paragraph of text. Second paragraph of text."

    def test_long_block_split_on_sentences(self):
        """Oversized blocks are split into pieces no longer than the maximum."""
        sentence = "This sentence describes the role in some detail. "
        html = f"<body><p>{sentence * 100}</p></body>"
        chunks = chunk_html(html)

        assert len(chunks) > 1
        assert all(len(c.text) <= MAX_CHUNK_CHARS for c in chunks)
        assert all(c.text.endswith(".") for c in chunks)

    def test_text_without_blocks(self):
        """A page without block elements becomes a single chunk."""
        chunks = chunk_html("<body><a href='/x'>Backend Engineer at Acme Robotics</a></body>")

        assert len(chunks) == 1
        assert chunks[0].source_tag is None

    def test_empty_page(self):
        """No text, no chunks."""
        assert chunk_html("<html><body></body></html>") == []


# ===== TESTS: Pre-filter Scoring =====

class TestScoreChunks:
    """Tests for keyword_boost and score_chunks."""

    def test_keyword_boost_capped(self):
        """Each job term adds 0.05, capped at 0.4."""
        assert keyword_boost("salary") == pytest.approx(0.05)
        text = " ".join([
            "responsibilities", "requirements", "qualifications", "experience",
            "salary", "compensation", "benefits", "apply", "location", "remote",
        ])
        assert keyword_boost(text) == pytest.approx(0.4)

    def test_similarity_plus_boost(self):
        """Score is cosine similarity plus keyword boost, in document order."""
        chunks = [
            Chunk(id="c0", text="nothing relevant here", document_index=0),
            Chunk(id="c1", text="salary and benefits", document_index=1),
        ]
        scores = score_chunks(chunks, [[0.0, 1.0], [1.0, 0.0]], [1.0, 0.0], top_k=5, min_score=0.5)

        assert [s.chunk_id for s in scores] == ["c0", "c1"]
        assert scores[0].score == pytest.approx(0.0, abs=1e-6)
        assert scores[1].score == pytest.approx(1.1, abs=1e-6)
        assert [s.keep for s in scores] == [False, True]

    def test_top_k(self):
        """At most top_k chunks are kept."""
        chunks = [Chunk(id=f"c{i}", text="text", document_index=i) for i in range(5)]
        scores = score_chunks(chunks, [[1.0, 0.0]] * 5, [1.0, 0.0], top_k=2, min_score=0.0)
        assert sum(1 for s in scores if s.keep) == 2

    def test_mismatched_embeddings_use_keywords(self):
        """Embeddings of the wrong shape fall back to keyword scores."""
        chunks = [Chunk(id="c0", text="salary", document_index=0)]
        scores = score_chunks(chunks, [[1.0, 0.0, 0.0]], [1.0, 0.0], min_score=0.0)
        assert scores[0].score == pytest.approx(0.05)


# ===== TESTS: Keep Rules =====

class TestDecideKeep:
    """Tests for the keep rules applied after LLM ranking."""

    def _chunks(self):
        return [
            Chunk(id="c0", text="Senior Backend Engineer", document_index=0, source_tag="h1"),
            Chunk(id="c1", text="About the payments team", document_index=1, source_tag="p"),
            Chunk(id="c2", text="Home Jobs Contact", document_index=2, source_tag="nav"),
            Chunk(id="c3", text="Benefits include equity", document_index=3, source_tag="p"),
        ]

    def test_hard_keep_excludes_chrome(self):
        """High scores are kept unless the chunk is navigational chrome."""
        scores = [
            ChunkScore("c0", 0.2, label="GENERAL_JOB_TEXT"),
            ChunkScore("c1", 0.7, label="ABOUT"),
            ChunkScore("c2", 0.9, label="GENERAL_JOB_TEXT"),
            ChunkScore("c3", 0.1, label="BENEFITS"),
        ]
        decide_keep(self._chunks(), scores, budget=2)

        assert scores[1].keep is True
        assert scores[0].keep is True  # h1 title rule fills the second slot
        assert scores[2].keep is False
        assert scores[3].keep is False

    def test_h1_kept_without_title_label(self):
        """Without a TITLE label the <h1> chunk is kept."""
        scores = [
            ChunkScore("c0", 0.1, label="GENERAL_JOB_TEXT"),
            ChunkScore("c1", 0.7, label="ABOUT"),
            ChunkScore("c2", 0.0, label="NAV_OR_FOOTER"),
            ChunkScore("c3", 0.1, label="BENEFITS"),
        ]
        decide_keep(self._chunks(), scores)

        assert scores[0].keep is True
        assert scores[2].keep is False

    def test_best_title_label_kept(self):
        """The best TITLE-labelled chunk is kept even at a low score."""
        scores = [
            ChunkScore("c0", 0.1, label="GENERAL_JOB_TEXT"),
            ChunkScore("c1", 0.2, label="TITLE"),
            ChunkScore("c2", 0.0, label="NAV_OR_FOOTER"),
            ChunkScore("c3", 0.25, label="TITLE"),
        ]
        decide_keep(self._chunks(), scores)

        assert scores[3].keep is True
        assert scores[1].keep is False
        assert scores[0].keep is False

    def test_budget(self):
        """Soft keeps stop at the budget."""
        chunks = [Chunk(id=f"c{i}", text="text", document_index=i, source_tag="p") for i in range(5)]
        scores = [ChunkScore(f"c{i}", 0.4, label="GENERAL_JOB_TEXT") for i in range(5)]
        decide_keep(chunks, scores, budget=2)
        assert sum(1 for s in scores if s.keep) == 2


# ===== TESTS: Focused Document =====

class TestBuildFocusedContent:
    """Tests for build_focused_content."""

    def test_document_order_and_escaping(self):
        """Kept chunks appear in document order with their text escaped."""
        chunks = [
            Chunk(id="c0", text="Title <Senior>", document_index=0),
            Chunk(id="c1", text="Dropped text", document_index=1),
            Chunk(id="c2", text="Salary & benefits", document_index=2),
        ]
        scores = [ChunkScore("c2", 0.9, keep=True), ChunkScore("c0", 0.9, keep=True), ChunkScore("c1", 0.1)]
        html = build_focused_content(scores, chunks)

        assert html.index('data-chunk-id="c0"') < html.index('data-chunk-id="c2"')
        assert "Title &lt;Senior&gt;" in html
        assert "Salary &amp; benefits" in html
        assert "Dropped text" not in html


# ===== TESTS: focus_content =====

class TestFocusContent:
    """Tests for the full focus pipeline."""

    @pytest.mark.asyncio
    async def test_focus_keeps_ranked_chunks(self, make_llm, tmp_path):
        """Chunks ranked relevant are kept; footer chrome is dropped."""
        llm = make_llm(replies=[
            _rank_reply(0.9, "TITLE", memory={"has_title": True}),
            _rank_reply(0.6, "ABOUT"),
            _rank_reply(0.2, "NAV_OR_FOOTER"),
        ])
        artifacts = ArtifactStore("run", root=str(tmp_path))
        result = await focus_content(JOB_PAGE, llm, artifacts=artifacts)

        assert result.focused_html is not None
        assert 'data-chunk-id="c0"' in result.focused_html
        assert 'data-chunk-id="c1"' in result.focused_html
        assert 'data-chunk-id="c2"' not in result.focused_html
        assert result.kept_count == 2

        for name in ("chunks.json", "embeddings.json", "chunk_scores.json", "focused_content.html"):
            assert (Path(artifacts.path) / name).exists()

    @pytest.mark.asyncio
    async def test_memory_carried_forward(self, make_llm):
        """Flags reported by one ranking call are passed to the next."""
        llm = make_llm(replies=[
            _rank_reply(0.9, "TITLE", memory={"has_title": True}),
            _rank_reply(0.6, "ABOUT"),
            _rank_reply(0.2, "NAV_OR_FOOTER"),
        ])
        await focus_content(JOB_PAGE, llm)

        assert '"has_title": false' in llm.prompts[0]
        assert '"has_title": true' in llm.prompts[1]
        assert "Senior Backend Engineer" in llm.prompts[1]  # previous chunk
        assert all(o.temperature == Config.ANALYTICAL_TEMPERATURE for o in llm.options)

    @pytest.mark.asyncio
    async def test_bad_rank_reply_uses_defaults(self, make_llm):
        """An unparseable ranking reply falls back to the default importance and label."""
        llm = make_llm(default="not json")
        result = await focus_content(JOB_PAGE, llm)

        labels = {s.label for s in result.scores}
        assert labels == {"GENERAL_JOB_TEXT"}
        # h1 is kept as the title-like chunk
        assert next(s for s in result.scores if s.chunk_id == "c0").keep is True

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades(self, make_llm, embedding_failure):
        """An embedding failure yields no focused document and no ranking calls."""
        llm = make_llm(embed_error=embedding_failure)
        result = await focus_content(JOB_PAGE, llm)

        assert result.focused_html is None
        assert "model not found" in result.error
        assert len(result.chunks) == 3
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_nothing_to_focus(self, make_llm):
        """An empty page is not focused."""
        llm = make_llm()
        result = await focus_content("<html><body></body></html>", llm)

        assert result.focused_html is None
        assert llm.embedded == []

    @pytest.mark.asyncio
    async def test_cancel_stops_ranking(self, make_llm):
        """A cancelled run stops before the next ranking call."""
        token = CancellationToken()
        token.cancel()
        llm = make_llm()

        with pytest.raises(PipelineStopped):
            await focus_content(JOB_PAGE, llm, cancel=token)
        assert llm.prompts == []
