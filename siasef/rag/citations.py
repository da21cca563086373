"""Inline citation markers of the form ``{{ref:N}}``.

N is a 1-based index into the sources sent with the same answer. Markers that
do not resolve are kept as literal text, never an error.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from siasef.models import Source

CITATION_PATTERN = re.compile(r"\{\{ref:(\d+)\}\}")


def citation_marker(source_id: int) -> str:
    return "{{ref:%d}}" % source_id


@dataclass
class Segment:
    """A run of answer text, or a citation when ``source`` is set."""

    text: str
    source: Optional[Source] = None

    @property
    def is_citation(self) -> bool:
        return self.source is not None


def split_citations(text: str, sources: Sequence[Source]) -> List[Segment]:
    """Split answer text into plain and citation segments."""
    by_id = {source.id: source for source in sources}
    segments: List[Segment] = []
    position = 0

    for match in CITATION_PATTERN.finditer(text):
        source = by_id.get(int(match.group(1)))
        if source is None:
            continue
        if match.start() > position:
            segments.append(Segment(text[position:match.start()]))
        segments.append(Segment(match.group(0), source))
        position = match.end()

    if position < len(text):
        segments.append(Segment(text[position:]))

    return _merge_plain(segments)


def _merge_plain(segments: List[Segment]) -> List[Segment]:
    merged: List[Segment] = []
    for segment in segments:
        if merged and not segment.is_citation and not merged[-1].is_citation:
            merged[-1] = Segment(merged[-1].text + segment.text)
        else:
            merged.append(segment)
    return merged


def cited_ids(text: str) -> List[int]:
    """Distinct source ids referenced by the text, in order of first use."""
    seen: List[int] = []
    for match in CITATION_PATTERN.finditer(text):
        source_id = int(match.group(1))
        if source_id not in seen:
            seen.append(source_id)
    return seen


def unresolved_citations(text: str, sources: Sequence[Source]) -> List[int]:
    known = {source.id for source in sources}
    return [source_id for source_id in cited_ids(text) if source_id not in known]


def strip_citations(text: str) -> str:
    """Remove every marker, e.g. for copying an answer as plain text."""
    return CITATION_PATTERN.sub("", text)
