"""Document-to-text reader used for text extraction and prompt fallbacks."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

import pdfplumber

from .exceptions import DocumentNotAccessibleError, UnsupportedDocumentFormatError

logger = logging.getLogger(__name__)


class DocumentTextReader(Protocol):
    async def read_text(self, path: str) -> str:
        ...


class PdfTextReader:
    """Reads text from PDFs (pdfplumber) and plain-text files.

    Parsing runs in a worker thread so the event loop keeps serving status
    polls while a large PDF is read.
    """

    text_suffixes = {".txt", ".md", ".csv"}

    async def read_text(self, path: str) -> str:
        p = Path(path)
        if not p.is_file():
            raise DocumentNotAccessibleError(f"Document not accessible: {path}", stage="read")
        suffix = p.suffix.lower()
        if suffix in self.text_suffixes:
            return await asyncio.to_thread(p.read_text, encoding="utf-8", errors="replace")
        if suffix != ".pdf":
            raise UnsupportedDocumentFormatError(
                f"Unsupported document format: {suffix or 'none'}", stage="read"
            )
        try:
            pages = await asyncio.to_thread(self._pdf_pages, p)
        except Exception as e:
            logger.warning("ai.text_reader.pdf_failed", extra={"stage": "read"}, exc_info=True)
            raise UnsupportedDocumentFormatError(f"Unreadable PDF: {e}", stage="read") from e
        return "\n".join(pages)

    @staticmethod
    def _pdf_pages(path: Path) -> list:
        with pdfplumber.open(path) as pdf:
            return [page.extract_text() or "" for page in pdf.pages]
