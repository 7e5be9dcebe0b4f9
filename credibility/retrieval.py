"""Keyword relevance scoring used to pick the chunk sent to the classifier."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from credibility.config import MAX_PROMPT_CHUNK_CHARS

log = logging.getLogger(__name__)

DOMAIN_KEYWORDS = (
    "net zero",
    "carbon neutral",
    "emissions",
    "climate",
    "transition",
    "targets",
    "governance",
    "board",
    "strategy",
    "plan",
    "progress",
)

STOPWORDS = frozenset(
    {
        "about", "above", "after", "again", "against", "also", "been", "before",
        "being", "between", "both", "does", "doing", "during", "each", "from",
        "further", "have", "having", "here", "into", "more", "most", "other",
        "over", "same", "should", "some", "such", "than", "that", "their",
        "them", "then", "there", "these", "they", "this", "those", "through",
        "under", "until", "very", "what", "when", "where", "which", "while",
        "whom", "will", "with", "would", "your", "company", "organization",
        "organisation", "clearly",
    }
)

MAX_QUESTION_TERMS = 6
KEYWORD_WEIGHT = 3
MAX_LENGTH_BONUS = 2.0

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9\-]*")


@dataclass
class ScoredChunk:
    index: int
    text: str
    score: float


def significant_words(question_text: str, limit: int = MAX_QUESTION_TERMS) -> list[str]:
    words: list[str] = []
    for word in _WORD_RE.findall(question_text.lower()):
        if len(word) > 3 and word not in STOPWORDS and word not in words:
            words.append(word)
            if len(words) == limit:
                break
    return words


def match_vocabulary(question_text: str) -> list[str]:
    vocabulary = list(DOMAIN_KEYWORDS)
    for word in significant_words(question_text):
        if word not in vocabulary:
            vocabulary.append(word)
    return vocabulary


def score_chunk(chunk: str, vocabulary: list[str]) -> float:
    lowered = chunk.lower()
    hits = sum(lowered.count(keyword) for keyword in vocabulary)
    return KEYWORD_WEIGHT * hits + min(len(chunk) / 1000, MAX_LENGTH_BONUS)


def rank_chunks(chunks: list[str], question_text: str) -> list[ScoredChunk]:
    """Score every chunk; stable order so ties keep document order."""
    vocabulary = match_vocabulary(question_text)
    scored = [
        ScoredChunk(index=idx, text=chunk, score=score_chunk(chunk, vocabulary))
        for idx, chunk in enumerate(chunks)
    ]
    return sorted(scored, key=lambda item: item.score, reverse=True)


def select_best_chunk(
    chunks: list[str],
    question_text: str,
    max_chars: int = MAX_PROMPT_CHUNK_CHARS,
) -> str:
    if not chunks:
        return ""
    best = rank_chunks(chunks, question_text)[0]
    log.debug("Selected chunk %d (score %.2f) for question", best.index, best.score)
    return best.text[:max_chars]
