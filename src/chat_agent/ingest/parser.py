"""Parsing interfaces and the content-directory document source."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from chat_agent.types import ParsedDocument

logger = logging.getLogger(__name__)


class Parser(ABC):
    """Base parser interface used when loading the content directory."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        """Parse a file into normalized text + metadata."""


class TextParser(Parser):
    """Parser for plain text documents."""

    extensions = (".txt",)

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        text = path.read_text(encoding="utf-8")
        return ParsedDocument(
            doc_id=doc_id or path.name,
            text=text,
            metadata={"source": path.name, "format": "text"},
        )


class MarkdownParser(Parser):
    """Parser for markdown documents."""

    extensions = (".md", ".markdown")

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        text = path.read_text(encoding="utf-8")
        return ParsedDocument(
            doc_id=doc_id or path.name,
            text=text,
            metadata={"source": path.name, "format": "markdown"},
        )


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), MarkdownParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self._parsers

    def parse_path(self, path: str | Path, *, doc_id: str | None = None) -> ParsedDocument:
        file_path = Path(path)
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise ValueError(f"No parser registered for extension: {file_path.suffix}")
        return parser.parse(file_path, doc_id=doc_id)

    def parse_directory(self, directory: str | Path) -> list[ParsedDocument]:
        """Parse every supported file directly inside `directory`.

        Raises `OSError` when the directory itself cannot be listed. Files that
        fail to read or decode are logged and skipped.
        """

        root = Path(directory)
        entries = sorted(root.iterdir())
        documents: list[ParsedDocument] = []
        for entry in entries:
            if not entry.is_file() or not self.supports(entry):
                continue
            try:
                documents.append(self.parse_path(entry))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to read document %s: %s", entry.name, exc)
        logger.info("Loaded %d documents from %s", len(documents), root)
        return documents
