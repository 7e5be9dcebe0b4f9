"""Centralized configuration for the credibility assessment engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(PROJECT_ROOT / ".env")

DATA_DIR = PROJECT_ROOT / "data"
OUTPUTS_DIR = PROJECT_ROOT / "outputs"


def bootstrap_runtime_dirs() -> None:
    for path in (DATA_DIR, OUTPUTS_DIR):
        path.mkdir(parents=True, exist_ok=True)

# LLM provider configuration
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "mistral")
OFFLINE_MODE = os.getenv("OFFLINE_MODE", "0").strip().lower() in {"1", "true", "yes"}

MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY", "")
MISTRAL_ENDPOINT = os.getenv("MISTRAL_ENDPOINT", "https://api.mistral.ai/v1/")
MISTRAL_MODEL = os.getenv("MISTRAL_MODEL", "mistral-large-latest")

AZURE_ENDPOINT = os.getenv("AZURE_ENDPOINT", "")
AZURE_API_KEY = os.getenv("AZURE_API_KEY", "")
AZURE_API_VERSION = os.getenv("AZURE_API_VERSION", "2024-12-01-preview")
AZURE_MODEL = os.getenv("AZURE_MODEL", "gpt-4o-mini")

# Generation and reliability
CLASSIFIER_TEMPERATURE = float(os.getenv("CLASSIFIER_TEMPERATURE", "0.0"))
CLASSIFIER_MAX_TOKENS = int(os.getenv("CLASSIFIER_MAX_TOKENS", "10"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
LLM_BACKOFF_BASE_S = float(os.getenv("LLM_BACKOFF_BASE_S", "3.0"))
LLM_BACKOFF_MAX_S = float(os.getenv("LLM_BACKOFF_MAX_S", "45.0"))
LLM_MIN_CALL_INTERVAL_S = float(os.getenv("LLM_MIN_CALL_INTERVAL_S", "0.5"))

# Chunking and relevance selection (characters)
CHUNK_SIZE_CHARS = int(os.getenv("CHUNK_SIZE_CHARS", "2000"))
CHUNK_OVERLAP_CHARS = int(os.getenv("CHUNK_OVERLAP_CHARS", "300"))
MAX_CHUNKS = int(os.getenv("MAX_CHUNKS", "35"))
MIN_CHUNK_CHARS = int(os.getenv("MIN_CHUNK_CHARS", "200"))
MAX_PROMPT_CHUNK_CHARS = int(os.getenv("MAX_PROMPT_CHUNK_CHARS", "1800"))

# Document limits
MAX_DOCUMENT_CHARS = int(os.getenv("MAX_DOCUMENT_CHARS", "150000"))
MIN_DOCUMENT_CHARS = int(os.getenv("MIN_DOCUMENT_CHARS", "100"))
MAX_BINARY_RATIO = float(os.getenv("MAX_BINARY_RATIO", "0.3"))
MAX_UPLOAD_FILE_MB = int(os.getenv("MAX_UPLOAD_FILE_MB", "25"))

# Assessment run policy
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
EVALUATION_STRATEGY = os.getenv("EVALUATION_STRATEGY", "single_best")
MULTI_SCAN_MAX_CHUNKS = int(os.getenv("MULTI_SCAN_MAX_CHUNKS", "6"))
QUESTION_DELAY_S = float(os.getenv("QUESTION_DELAY_S", "0.5"))
QUESTION_TIMEOUT_S = float(os.getenv("QUESTION_TIMEOUT_S", "180"))
RUN_TIMEOUT_S = float(os.getenv("RUN_TIMEOUT_S", "720"))
BATCH_LEASE_S = float(os.getenv("BATCH_LEASE_S", "900"))
NA_SCORE_RATIO = float(os.getenv("NA_SCORE_RATIO", "0.5"))
FALLBACK_SCORE_RATIO = float(os.getenv("FALLBACK_SCORE_RATIO", "0.4"))


@dataclass(frozen=True)
class AssessmentSettings:
    """Snapshot of the tunables one assessment run uses."""

    batch_size: int = BATCH_SIZE
    strategy: str = EVALUATION_STRATEGY
    chunk_size: int = CHUNK_SIZE_CHARS
    chunk_overlap: int = CHUNK_OVERLAP_CHARS
    max_chunks: int = MAX_CHUNKS
    min_chunk_chars: int = MIN_CHUNK_CHARS
    max_prompt_chunk_chars: int = MAX_PROMPT_CHUNK_CHARS
    multi_scan_max_chunks: int = MULTI_SCAN_MAX_CHUNKS
    question_delay_s: float = QUESTION_DELAY_S
    question_timeout_s: float = QUESTION_TIMEOUT_S
    run_timeout_s: float = RUN_TIMEOUT_S
    batch_lease_s: float = BATCH_LEASE_S
    na_score_ratio: float = NA_SCORE_RATIO
    fallback_score_ratio: float = FALLBACK_SCORE_RATIO

    @classmethod
    def from_env(cls) -> "AssessmentSettings":
        # Re-read the environment so overrides set after import are honoured.
        return cls(
            batch_size=int(os.getenv("BATCH_SIZE", str(BATCH_SIZE))),
            strategy=os.getenv("EVALUATION_STRATEGY", EVALUATION_STRATEGY),
            question_delay_s=float(os.getenv("QUESTION_DELAY_S", str(QUESTION_DELAY_S))),
            question_timeout_s=float(os.getenv("QUESTION_TIMEOUT_S", str(QUESTION_TIMEOUT_S))),
            run_timeout_s=float(os.getenv("RUN_TIMEOUT_S", str(RUN_TIMEOUT_S))),
        )
