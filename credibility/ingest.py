"""Document text loading, validation and chunking utilities."""

from __future__ import annotations

import logging
from pathlib import Path

import fitz
from docx import Document

from credibility.config import (
    CHUNK_OVERLAP_CHARS,
    CHUNK_SIZE_CHARS,
    MAX_BINARY_RATIO,
    MAX_CHUNKS,
    MAX_DOCUMENT_CHARS,
    MIN_CHUNK_CHARS,
    MIN_DOCUMENT_CHARS,
)
from credibility.errors import DocumentTextError
from credibility.models import DocumentChunk
from credibility.security import (
    binary_ratio,
    sanitize_text,
    validate_extension,
    validate_upload_size,
)

log = logging.getLogger(__name__)

_SENTENCE_ENDS = ".!?"
# Sentence trims only look inside the last 30% of a window.
_SENTENCE_SEARCH_FROM = 0.7


def _read_pdf(path: Path) -> str:
    with fitz.open(path) as pdf:
        return "\n".join(page.get_text("text") for page in pdf)


def _read_docx(path: Path) -> str:
    paragraphs = (p.text for p in Document(str(path)).paragraphs)
    return "\n".join(text for text in paragraphs if text.strip())


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="ignore")


def load_document_text(path: str | Path) -> str:
    source = Path(path).expanduser().resolve()
    if not source.exists() or not source.is_file():
        raise FileNotFoundError(f"File not found: {source}")
    ext = validate_extension(source.name)
    validate_upload_size(source.stat().st_size)
    if ext == ".pdf":
        return _read_pdf(source)
    if ext == ".docx":
        return _read_docx(source)
    return _read_text(source)


def prepare_document_text(
    text: str | None,
    max_chars: int = MAX_DOCUMENT_CHARS,
    min_chars: int = MIN_DOCUMENT_CHARS,
) -> tuple[str, bool]:
    """Validate extracted text and cap its length.

    Returns the cleaned text and whether it was truncated. Raises
    ``DocumentTextError`` when the text is missing, too short or looks binary.
    """
    if not text or not text.strip():
        raise DocumentTextError(
            "Document text not available.",
            user_message="Document text not available. Please process the document first.",
        )
    ratio = binary_ratio(text)
    if ratio > MAX_BINARY_RATIO:
        raise DocumentTextError(f"Document text looks binary ({ratio:.0%} non-printable).")

    cleaned, filtered = sanitize_text(text)
    if filtered:
        log.warning("Removed %d instruction-like lines from document text", filtered)
    if len(cleaned) < min_chars:
        raise DocumentTextError(
            f"Extracted text is too short ({len(cleaned)} chars).",
            user_message=(
                "Extracted text is too short. The document may be empty, "
                "image-based, or corrupted."
            ),
        )

    if len(cleaned) > max_chars:
        log.warning("Document size: %d chars, truncating to %d", len(cleaned), max_chars)
        return cleaned[:max_chars], True
    return cleaned, False


def chunk_document(
    text: str,
    size: int = CHUNK_SIZE_CHARS,
    overlap: int = CHUNK_OVERLAP_CHARS,
    max_chunks: int = MAX_CHUNKS,
    min_chunk_chars: int = MIN_CHUNK_CHARS,
) -> list[DocumentChunk]:
    if size <= 0 or overlap < 0 or overlap >= size:
        raise ValueError(f"Expected size > overlap >= 0, got size={size}, overlap={overlap}.")
    if max_chunks < 1:
        raise ValueError(f"Expected max_chunks >= 1, got {max_chunks}.")

    step = size - overlap
    total = len(text)
    chunks: list[DocumentChunk] = []
    start = 0
    while start < total and len(chunks) < max_chunks:
        end = min(start + size, total)
        window = text[start:end]
        if end < total:
            cut = max(window.rfind(mark) for mark in _SENTENCE_ENDS)
            if cut > size * _SENTENCE_SEARCH_FROM:
                window = window[: cut + 1]

        if len(window.strip()) >= min_chunk_chars:
            chunks.append(DocumentChunk(index=len(chunks), start=start, text=window))

        if start + len(window) >= total:
            break
        # A trimmed window may be shorter than the step; never skip text.
        start += min(step, len(window))

    if not chunks and text.strip():
        chunks.append(DocumentChunk(index=0, start=0, text=text[:size]))

    if len(chunks) >= max_chunks and chunks[-1].end < total:
        log.info(
            "Chunk cap reached: %d chunks cover %d of %d chars",
            len(chunks),
            chunks[-1].end,
            total,
        )
    return chunks


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE_CHARS,
    overlap: int = CHUNK_OVERLAP_CHARS,
    max_chunks: int = MAX_CHUNKS,
    min_chunk_chars: int = MIN_CHUNK_CHARS,
) -> list[str]:
    return [
        chunk.text
        for chunk in chunk_document(
            text,
            size=size,
            overlap=overlap,
            max_chunks=max_chunks,
            min_chunk_chars=min_chunk_chars,
        )
    ]
