"""Sentence-aware text chunking with word overlap for the RAG pipeline.

Passage content is always a literal slice of the input text. Overlap is
counted in words, but those words are located by their character spans, so
offsets and content never disagree, whatever the script of the text.
"""
import re
from typing import List, Optional, Tuple
import structlog

from siasef import config
from siasef.models import PassageDraft

logger = structlog.get_logger()

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
WORD = re.compile(r"\S+")


class TextChunker:
    """Greedy sentence accumulator producing overlapping, page-tagged passages."""

    def __init__(
        self,
        chunk_size: int = None,
        overlap_ratio: float = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Target passage size in characters (default from config)
            overlap_ratio: Share of a closed passage's words carried into the
                next one (default from config)
        """
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.overlap_ratio = (
            config.CHUNK_OVERLAP_RATIO if overlap_ratio is None else overlap_ratio
        )

        # Validate parameters
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if not 0 <= self.overlap_ratio < 1:
            raise ValueError(
                f"Overlap ratio ({self.overlap_ratio}) must be in [0, 1)"
            )

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            overlap_ratio=self.overlap_ratio,
        )

    def chunk_text(
        self, text: str, page_number: int = 1, base_offset: int = 0
    ) -> List[PassageDraft]:
        """Split text into overlapping passages.

        A passage closes when the next sentence would push it past the target
        size. A single sentence longer than the target becomes its own
        passage; sentences are never split.

        Args:
            text: Extracted text of one page (or of a whole document)
            page_number: Page attributed to every passage produced
            base_offset: Position of ``text`` within the full extracted document

        Returns:
            List of PassageDraft objects, offsets shifted by ``base_offset``
        """
        spans = self._sentence_spans(text)
        if not spans:
            return []

        drafts: List[PassageDraft] = []
        buffer_start: Optional[int] = None
        buffer_end: Optional[int] = None

        for start, end in spans:
            if buffer_start is None:
                buffer_start = start
            elif end - buffer_start > self.chunk_size:
                drafts.append(self._draft(text, buffer_start, buffer_end, page_number, base_offset))
                buffer_start = self._overlap_start(text, buffer_start, buffer_end, start)
            buffer_end = end

        drafts.append(self._draft(text, buffer_start, buffer_end, page_number, base_offset))

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(drafts),
            page_number=page_number,
        )

        return drafts

    def _sentence_spans(self, text: str) -> List[Tuple[int, int]]:
        """Return (start, end) spans of sentences with surrounding whitespace trimmed."""
        raw_spans = []
        position = 0
        for match in SENTENCE_BOUNDARY.finditer(text):
            raw_spans.append((position, match.start()))
            position = match.end()
        raw_spans.append((position, len(text)))

        spans = []
        for start, end in raw_spans:
            segment = text[start:end]
            stripped = segment.strip()
            if not stripped:
                continue
            start += len(segment) - len(segment.lstrip())
            spans.append((start, start + len(stripped)))
        return spans

    def _overlap_start(self, text: str, start: int, end: int, fallback: int) -> int:
        """Offset of the first overlap word taken from the passage text[start:end].

        Falls back to ``fallback`` (the triggering sentence) when the passage
        is too short to contribute a whole word.
        """
        words = list(WORD.finditer(text, start, end))
        count = int(len(words) * self.overlap_ratio + 1e-9)
        if count == 0:
            return fallback
        return words[-count].start()

    @staticmethod
    def _draft(
        text: str, start: int, end: int, page_number: int, base_offset: int
    ) -> PassageDraft:
        return PassageDraft(
            content=text[start:end],
            page_number=page_number,
            start_offset=base_offset + start,
            end_offset=base_offset + end,
        )

    def get_chunk_stats(self, drafts: List[PassageDraft]) -> dict:
        """Get statistics about a set of passages.

        Args:
            drafts: List of PassageDraft objects

        Returns:
            Dictionary with chunk statistics
        """
        if not drafts:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(d.content) for d in drafts]

        return {
            "chunk_count": len(drafts),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(drafts),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap_ratio": self.overlap_ratio,
        }


# Singleton instance for convenience
_chunker_instance = None


def get_chunker() -> TextChunker:
    """Get a singleton text chunker instance.

    Returns:
        TextChunker instance with default config
    """
    global _chunker_instance
    if _chunker_instance is None:
        _chunker_instance = TextChunker()
    return _chunker_instance


# Convenience function
def chunk(text: str, page_number: int = 1) -> List[PassageDraft]:
    """Chunk text using the default chunker."""
    return get_chunker().chunk_text(text, page_number)
