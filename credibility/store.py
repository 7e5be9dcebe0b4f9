"""Persistence boundary: progress, report and document stores.

The tracker only talks to the protocols below. In-memory stores back the tests
and the in-process driver; JSON file stores let the CLI resume a run across
separate invocations.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Protocol

from credibility.errors import ConcurrentBatchError, StorageError
from credibility.models import AssessmentProgress, AssessmentReport, StoredDocument, utcnow

log = logging.getLogger(__name__)


class ProgressStore(Protocol):
    def get(self, document_id: str, user_id: str) -> AssessmentProgress | None: ...

    def insert(self, progress: AssessmentProgress) -> AssessmentProgress: ...

    def update(self, progress: AssessmentProgress, expected_version: int) -> AssessmentProgress: ...


class ReportStore(Protocol):
    def insert(self, report: AssessmentReport) -> str: ...

    def get(self, report_id: str) -> AssessmentReport | None: ...


class DocumentStore(Protocol):
    def get(self, document_id: str, user_id: str) -> StoredDocument | None: ...


def _stamped(progress: AssessmentProgress, version: int) -> AssessmentProgress:
    return progress.model_copy(update={"version": version, "updated_at": utcnow()}, deep=True)


class InMemoryProgressStore:
    """Dict-backed progress rows with a version check on every update."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], AssessmentProgress] = {}
        self._lock = threading.Lock()

    def get(self, document_id: str, user_id: str) -> AssessmentProgress | None:
        with self._lock:
            row = self._rows.get((document_id, user_id))
            return row.model_copy(deep=True) if row is not None else None

    def insert(self, progress: AssessmentProgress) -> AssessmentProgress:
        with self._lock:
            if progress.key in self._rows:
                raise ConcurrentBatchError(f"Progress for {progress.key} already exists.")
            stored = _stamped(progress, 1)
            self._rows[progress.key] = stored
            return stored.model_copy(deep=True)

    def update(self, progress: AssessmentProgress, expected_version: int) -> AssessmentProgress:
        with self._lock:
            current = self._rows.get(progress.key)
            if current is None:
                raise StorageError(f"Progress for {progress.key} does not exist.")
            if current.version != expected_version:
                raise ConcurrentBatchError(
                    f"Progress for {progress.key} changed (version {current.version}, "
                    f"expected {expected_version})."
                )
            stored = _stamped(progress, expected_version + 1)
            self._rows[progress.key] = stored
            return stored.model_copy(deep=True)


class InMemoryReportStore:
    def __init__(self) -> None:
        self._reports: dict[str, AssessmentReport] = {}

    def insert(self, report: AssessmentReport) -> str:
        report_id = report.report_id or uuid.uuid4().hex
        # Reports are immutable once written; a repeated insert keeps the first.
        self._reports.setdefault(report_id, report.model_copy(update={"report_id": report_id}))
        return report_id

    def get(self, report_id: str) -> AssessmentReport | None:
        return self._reports.get(report_id)

    def all(self) -> list[AssessmentReport]:
        return list(self._reports.values())


class InMemoryDocumentStore:
    def __init__(self, documents: list[StoredDocument] | None = None) -> None:
        self._docs = {(d.document_id, d.user_id): d for d in documents or []}

    def put(self, document: StoredDocument) -> None:
        self._docs[(document.document_id, document.user_id)] = document

    def get(self, document_id: str, user_id: str) -> StoredDocument | None:
        return self._docs.get((document_id, user_id))


_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _safe_name(*parts: str) -> str:
    return "__".join(_UNSAFE.sub("_", part) for part in parts)


def _atomic_write(path: Path, payload: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(payload, encoding="utf-8")
    os.replace(tmp, path)


class JsonFileProgressStore:
    """One JSON file per (document, user) pair; versioned like the in-memory store."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, document_id: str, user_id: str) -> Path:
        return self._root / f"{_safe_name(document_id, user_id)}.json"

    def _read(self, path: Path) -> AssessmentProgress | None:
        if not path.exists():
            return None
        try:
            return AssessmentProgress.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read progress file {path}: {exc}") from exc

    def get(self, document_id: str, user_id: str) -> AssessmentProgress | None:
        with self._lock:
            return self._read(self._path(document_id, user_id))

    def insert(self, progress: AssessmentProgress) -> AssessmentProgress:
        path = self._path(*progress.key)
        stored = _stamped(progress, 1)
        with self._lock:
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(stored.model_dump_json(by_alias=True, indent=2))
            except FileExistsError as exc:
                raise ConcurrentBatchError(f"Progress for {progress.key} already exists.") from exc
            except OSError as exc:
                raise StorageError(f"Could not create progress file {path}: {exc}") from exc
        return stored

    def update(self, progress: AssessmentProgress, expected_version: int) -> AssessmentProgress:
        path = self._path(*progress.key)
        with self._lock:
            current = self._read(path)
            if current is None:
                raise StorageError(f"Progress for {progress.key} does not exist.")
            if current.version != expected_version:
                raise ConcurrentBatchError(
                    f"Progress for {progress.key} changed (version {current.version}, "
                    f"expected {expected_version})."
                )
            stored = _stamped(progress, expected_version + 1)
            try:
                _atomic_write(path, stored.model_dump_json(by_alias=True, indent=2))
            except OSError as exc:
                raise StorageError(f"Could not write progress file {path}: {exc}") from exc
        return stored


class JsonFileReportStore:
    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def insert(self, report: AssessmentReport) -> str:
        report_id = report.report_id or uuid.uuid4().hex
        stored = report.model_copy(update={"report_id": report_id})
        path = self._root / f"{_safe_name(report_id)}.json"
        try:
            with path.open("x", encoding="utf-8") as handle:
                handle.write(json.dumps(stored.to_wire(), indent=2, ensure_ascii=True))
        except FileExistsError:
            log.info("Report %s already written, keeping existing file", report_id)
            return report_id
        except OSError as exc:
            raise StorageError(f"Could not write report {path}: {exc}") from exc
        log.info("Report %s written to %s", report_id, path)
        return report_id

    def get(self, report_id: str) -> AssessmentReport | None:
        path = self._root / f"{_safe_name(report_id)}.json"
        if not path.exists():
            return None
        return AssessmentReport.model_validate_json(path.read_text(encoding="utf-8"))
