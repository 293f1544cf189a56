"""Paragraph chunking for the similarity index."""

from __future__ import annotations

import re
from dataclasses import dataclass

from chat_agent.types import ParsedDocument

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass(slots=True, frozen=True)
class TextFragment:
    """A paragraph awaiting embedding."""

    fragment_id: str
    source: str
    text: str


class ParagraphChunker:
    """Splits documents on blank lines and drops fragments that are too short.

    A paragraph is the unit of retrieval: it is small enough to be injected
    into a prompt verbatim and large enough to carry one coherent statement.
    Fragments shorter than `min_chars` (after stripping) are headings, list
    bullets or separators and are discarded before embedding.
    """

    def __init__(self, min_chars: int = 20) -> None:
        if min_chars < 1:
            raise ValueError("min_chars must be positive")
        self.min_chars = min_chars

    def chunk_document(self, document: ParsedDocument) -> list[TextFragment]:
        source = str(document.metadata.get("source", document.doc_id))
        fragments: list[TextFragment] = []
        for paragraph in self.split_paragraphs(document.text):
            if len(paragraph) < self.min_chars:
                continue
            fragments.append(
                TextFragment(
                    fragment_id=f"{document.doc_id}-chunk-{len(fragments):04d}",
                    source=source,
                    text=paragraph,
                )
            )
        return fragments

    @staticmethod
    def split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in _PARAGRAPH_BREAK.split(text) if part.strip()]
