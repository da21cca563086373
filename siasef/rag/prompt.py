"""Citation-aware prompt composition for the K3 safety assistant."""
from dataclasses import dataclass
from typing import List, Sequence

import structlog

from siasef.models import RankedPassage, Source
from siasef.rag.citations import citation_marker

logger = structlog.get_logger()

# Fixed system instruction given to every new chat session
SYSTEM_INSTRUCTION = """
You are **Si Asef**, an intelligent and professional **Safety Assistant (Asisten K3)** specialized in Indonesian Safety Regulations.

**YOUR KNOWLEDGE BASE:**
1. **UU No. 1 Tahun 1970** (Keselamatan Kerja)
2. **PP No. 50 Tahun 2012** (SMK3)
3. **Permenaker** related to K3.
4. **Internal Documents:** Referenced documents from the knowledge base.

**INSTRUCTIONS:**
1. **Use Document References:** When answering, cite sources using {{ref:N}} format where N is the source number.
2. **Be Specific:** Quote relevant parts from documents.
3. **Tone:** Professional, Helpful, authoritative but friendly.
4. **Language:** Indonesian (Bahasa Indonesia).
""".strip()


@dataclass
class ComposedPrompt:
    """Augmented prompt plus the sources it enumerates."""

    prompt: str
    sources: List[Source]
    query_degraded: bool = False

    @property
    def degraded(self) -> bool:
        """True when the query or any source embedding came from the fallback."""
        return self.query_degraded or any(source.degraded for source in self.sources)

    @property
    def confident(self) -> bool:
        return bool(self.sources) and not self.degraded


def build_sources(ranked: Sequence[RankedPassage]) -> List[Source]:
    """Number ranked passages 1..N in rank order."""
    return [
        Source(
            id=rank,
            chunk_id=item.passage.id,
            document_name=item.passage.document_name,
            page_number=item.passage.page_number,
            content=item.passage.content,
            score=item.score,
            degraded=item.passage.embedding_degraded,
        )
        for rank, item in enumerate(ranked, start=1)
    ]


def build_context_block(sources: Sequence[Source]) -> str:
    """
    Build the numbered reference block.

    Format:
    [Sumber 1] (Peraturan.pdf, Halaman 3):
    The passage text...
    """
    return "\n\n".join(
        f"[Sumber {s.id}] ({s.document_name}, Halaman {s.page_number}):\n{s.content}"
        for s in sources
    )


def build_instructions(source_count: int) -> str:
    """Citation instructions whose example markers stay within 1..source_count."""
    if source_count == 1:
        allowed = "1 (satu-satunya sumber)"
        example = (
            "Contoh: \"Menurut peraturan, setiap kecelakaan wajib dilaporkan "
            f"dalam waktu 2x24 jam {citation_marker(1)}.\""
        )
    else:
        allowed = f"1 sampai {source_count}"
        example = (
            "Contoh: \"Menurut peraturan, setiap kecelakaan wajib dilaporkan "
            f"{citation_marker(1)} dalam waktu 2x24 jam {citation_marker(2)}.\""
        )

    return (
        "PENTING: Sertakan nomor referensi dalam jawaban menggunakan format {{ref:N}} "
        f"tepat setelah setiap fakta yang diambil dari sumber N, dimana N adalah "
        f"nomor sumber ({allowed}). Jangan gunakan nomor lain.\n"
        f"{example}"
    )


def compose(
    question: str,
    ranked: Sequence[RankedPassage],
    query_degraded: bool = False,
) -> ComposedPrompt:
    """Compose the augmented prompt and its source list.

    With no ranked passages the question is returned unchanged and the model
    answers ungrounded.
    """
    if not ranked:
        return ComposedPrompt(prompt=question, sources=[], query_degraded=query_degraded)

    sources = build_sources(ranked)

    prompt = (
        "Berdasarkan dokumen referensi berikut, jawab pertanyaan user.\n\n"
        "DOKUMEN REFERENSI:\n"
        f"{build_context_block(sources)}\n\n"
        f"PERTANYAAN: {question}\n\n"
        f"{build_instructions(len(sources))}\n\n"
        "JAWABAN (sertakan {{ref:N}} untuk setiap fakta yang diambil dari sumber):"
    )

    composed = ComposedPrompt(prompt=prompt, sources=sources, query_degraded=query_degraded)

    logger.debug(
        "prompt_composed",
        source_count=len(sources),
        prompt_length=len(prompt),
        degraded=composed.degraded,
    )

    return composed
