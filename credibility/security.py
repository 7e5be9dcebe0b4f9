"""Input hygiene for plan documents before any of their text reaches the classifier."""

from __future__ import annotations

import re
from pathlib import Path

from credibility.config import MAX_UPLOAD_FILE_MB
from credibility.errors import UnsupportedDocumentError

ALLOWED_EXTENSIONS = {".pdf", ".docx", ".txt", ".md"}

# Lines that try to steer the Yes/No classifier instead of describing the plan.
_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous|prior)\s+instructions", re.IGNORECASE),
    re.compile(r"ignore\s+the\s+above", re.IGNORECASE),
    re.compile(r"system\s+prompt", re.IGNORECASE),
    re.compile(r"answer\s+(only\s+)?[\"']?yes[\"']?\s+to\s+(every|all|each)", re.IGNORECASE),
    re.compile(
        r"(rate|classify|mark)\s+(this|the)\s+(plan|company)\s+as\s+(aligned|credible)",
        re.IGNORECASE,
    ),
    re.compile(r"override\s+(the\s+)?(score|rating|assessment)", re.IGNORECASE),
    re.compile(r"reveal\s+(your\s+)?instructions", re.IGNORECASE),
    re.compile(r"jailbreak", re.IGNORECASE),
]

# Structural leftovers from naive PDF extraction, one per line.
_PDF_ARTIFACT_RE = re.compile(
    r"^\s*(\d+\s+\d+\s+obj|endobj|stream|endstream|xref|trailer|startxref|%%EOF)\s*$"
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SPACE_RUN_RE = re.compile(r"[ \t]{2,}")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def validate_extension(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
        raise UnsupportedDocumentError(
            f"Unsupported file extension '{ext}'. Allowed: {allowed}."
        )
    return ext


def validate_upload_size(size_bytes: int) -> None:
    if size_bytes <= 0:
        raise UnsupportedDocumentError("Document file is empty.")
    if size_bytes > MAX_UPLOAD_FILE_MB * 1024 * 1024:
        raise UnsupportedDocumentError(
            f"Document exceeds the upload size limit ({MAX_UPLOAD_FILE_MB} MB)."
        )


def is_injection(line: str) -> bool:
    return any(pattern.search(line) for pattern in _INJECTION_PATTERNS)


def sanitize_text(text: str) -> tuple[str, int]:
    """
    Returns the cleaned text and the number of instruction-like lines removed.

    Control characters become spaces, PDF structure lines are dropped,
    runs of spaces collapse to one and at most one blank line is kept
    between paragraphs.
    """
    kept: list[str] = []
    filtered = 0
    for line in _CONTROL_RE.sub(" ", text).splitlines():
        if _PDF_ARTIFACT_RE.match(line):
            continue
        if is_injection(line):
            filtered += 1
            continue
        kept.append(_SPACE_RUN_RE.sub(" ", line).rstrip())
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(kept)).strip(), filtered


def binary_ratio(text: str) -> float:
    """Share of characters that are neither printable nor ordinary whitespace."""
    if not text:
        return 0.0
    odd = sum(1 for ch in text if not (ch.isprintable() or ch in "\n\r\t"))
    return odd / len(text)
