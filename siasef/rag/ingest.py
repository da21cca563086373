"""Ingest pipeline for extracted document text.

Orchestrates:
- Empty-extraction check
- Per-page chunking
- Batched embedding generation
- Passage persistence, one embedding batch at a time
"""
from typing import Any, Dict, List, Sequence, Tuple
import structlog

from siasef import config
from siasef.db import PassageStore
from siasef.errors import EmptyExtractionError
from siasef.models import IngestResult, Passage, PassageDraft
from siasef.rag.chunker import TextChunker
from siasef.rag.embedder import Embedder

logger = structlog.get_logger()

PAGE_BREAK = "\f"


def split_pages(text: str) -> List[Tuple[int, str, int]]:
    """Split extracted text on form feeds into (page_number, text, offset) triples.

    ``offset`` is where the page starts in ``text``. Page numbers count every
    form feed, so blank pages still advance the numbering; pages without text
    are left out.
    """
    pages = []
    offset = 0
    for number, page in enumerate(text.split(PAGE_BREAK), start=1):
        if page.strip():
            pages.append((number, page, offset))
        offset += len(page) + len(PAGE_BREAK)
    return pages


class IngestPipeline:
    """Pipeline for ingesting extracted text into the passage store."""

    def __init__(
        self,
        store: PassageStore,
        embedder: Embedder,
        chunker: TextChunker = None,
        batch_size: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Destination passage store
            embedder: Embedder for passage vectors
            chunker: Text chunker (default: configured TextChunker)
            batch_size: Passages embedded and persisted per step (default from config)
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE

        self.stats = {
            "documents_processed": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
            "embeddings_degraded": 0,
        }

    async def ingest_document(
        self,
        name: str,
        text: str,
        file_type: str = "text/plain",
        first_page: int = 1,
    ) -> IngestResult:
        """Create a document from extracted text and ingest all of its pages.

        Form feeds in ``text`` separate pages; without any, the whole text is
        attributed to ``first_page``.

        Raises:
            EmptyExtractionError: If the text is empty or whitespace-only
        """
        if not text or not text.strip():
            logger.warning("empty_extraction", document_name=name)
            raise EmptyExtractionError(name)

        pages = [
            (first_page + number - 1, page, offset)
            for number, page, offset in split_pages(text)
        ]
        page_count = text.count(PAGE_BREAK) + 1
        document_id = self.store.insert_document(name, file_type, page_count)

        try:
            result = await self.ingest_pages(document_id, pages)
        except Exception as e:
            logger.error(
                "document_ingestion_failed",
                document_id=document_id,
                document_name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.store.delete_document(document_id)
            raise

        result.page_count = page_count
        self.stats["documents_processed"] += 1

        logger.info(
            "document_ingested",
            document_id=document_id,
            document_name=name,
            pages=page_count,
            chunks_created=result.chunk_count,
            degraded=result.degraded_count,
        )

        return result

    async def ingest_text(self, document_id: int, text: str, page_number: int = 1) -> int:
        """Ingest one page of extracted text for an existing document.

        Returns:
            Number of passages created

        Raises:
            EmptyExtractionError: If the text is empty or whitespace-only
        """
        result = await self.ingest_pages(document_id, [(page_number, text, 0)])
        return result.chunk_count

    async def ingest_pages(
        self, document_id: int, pages: Sequence[Tuple[int, str, int]]
    ) -> IngestResult:
        """Chunk, embed and persist pages of an existing document.

        ``pages`` holds (page_number, text, offset) triples; passage offsets
        are shifted by each page's offset into the extracted text.

        Passages are numbered after any the document already has, and each
        embedding batch is persisted as soon as it completes.
        """
        drafts: List[PassageDraft] = []
        for page_number, page_text, page_offset in pages:
            drafts.extend(self.chunker.chunk_text(page_text, page_number, page_offset))

        if not drafts:
            logger.warning("no_chunks_created", document_id=document_id)
            raise EmptyExtractionError()

        first_index = self.store.count_passages(document_id)
        passage_ids: List[int] = []
        degraded = 0

        for i in range(0, len(drafts), self.batch_size):
            batch = drafts[i : i + self.batch_size]
            embeddings = await self.embedder.embed_batch([d.content for d in batch])

            for offset, (draft, embedding) in enumerate(zip(batch, embeddings)):
                passage = Passage(
                    document_id=document_id,
                    sequence_index=first_index + i + offset,
                    content=draft.content,
                    page_number=draft.page_number,
                    start_offset=draft.start_offset,
                    end_offset=draft.end_offset,
                    embedding=embedding.vector,
                    embedding_degraded=embedding.degraded,
                )
                passage_ids.append(self.store.insert_passage(passage))
                degraded += int(embedding.degraded)

            logger.debug(
                "passage_batch_persisted",
                document_id=document_id,
                batch_start=i,
                batch_size=len(batch),
            )

        self.store.update_document_chunk_count(document_id, first_index + len(drafts))

        self.stats["chunks_created"] += len(drafts)
        self.stats["embeddings_generated"] += len(drafts) - degraded
        self.stats["embeddings_degraded"] += degraded

        return IngestResult(
            document_id=document_id,
            chunk_count=len(drafts),
            page_count=len({d.page_number for d in drafts}),
            degraded_count=degraded,
            passage_ids=passage_ids,
        )

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
