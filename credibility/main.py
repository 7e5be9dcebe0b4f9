"""CLI entrypoint for assessing one transition plan document."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from credibility import config
from credibility.logging_config import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Assess the credibility of a climate transition plan against a questionnaire."
    )
    parser.add_argument(
        "--doc",
        required=True,
        help="Transition plan document (pdf/docx/txt/md).",
    )
    parser.add_argument(
        "--questionnaire",
        required=True,
        help="Questionnaire JSON file.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Path for the JSON report (default: outputs/<document>_report.json).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run deterministic offline mode (no API keys or external model calls).",
    )
    parser.add_argument(
        "--strategy",
        choices=["single_best", "multi_scan"],
        default=None,
        help="Evaluation strategy (default: EVALUATION_STRATEGY or single_best).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Questions per batch (default: BATCH_SIZE or 5).",
    )
    parser.add_argument(
        "--batch-index",
        type=int,
        default=None,
        help="Run only this batch against stored progress, so repeated calls resume.",
    )
    parser.add_argument(
        "--user-id",
        default="local-user",
        help="Owner of the assessment progress record.",
    )
    parser.add_argument(
        "--document-id",
        default=None,
        help="Progress key for the document (default: the file name without extension).",
    )
    return parser


def _write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=True), encoding="utf-8")


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()
    config.bootstrap_runtime_dirs()
    if args.offline:
        os.environ["OFFLINE_MODE"] = "1"
        os.environ["LLM_PROVIDER"] = "mock"
        os.environ.setdefault("QUESTION_DELAY_S", "0")
    if args.strategy:
        os.environ["EVALUATION_STRATEGY"] = args.strategy
    if args.batch_size:
        os.environ["BATCH_SIZE"] = str(args.batch_size)

    from credibility.errors import AssessmentError, DocumentNotFoundError, error_response
    from credibility.ingest import load_document_text
    from credibility.models import StoredDocument
    from credibility.pipeline import AssessmentService, run_assessment
    from credibility.progress import ProgressTracker
    from credibility.questionnaire import FileQuestionnaireProvider, load_questionnaire
    from credibility.store import (
        InMemoryDocumentStore,
        JsonFileProgressStore,
        JsonFileReportStore,
    )

    doc_path = Path(args.doc)
    document_id = args.document_id or doc_path.stem
    output = Path(args.output) if args.output else config.OUTPUTS_DIR / f"{document_id}_report.json"
    settings = config.AssessmentSettings.from_env()

    try:
        try:
            text = load_document_text(doc_path)
        except FileNotFoundError as exc:
            raise DocumentNotFoundError(str(exc)) from exc

        if args.batch_index is None:
            report = run_assessment(
                text,
                load_questionnaire(args.questionnaire),
                document_id=document_id,
                user_id=args.user_id,
                company_name=doc_path.stem,
                settings=settings,
            )
            payload = report.to_wire()
            _write_json(output, payload)
            print(json.dumps(payload, indent=2, ensure_ascii=True))
            return
    except AssessmentError as exc:
        print(json.dumps(error_response(exc), indent=2, ensure_ascii=True))
        raise SystemExit(1) from exc

    tracker = ProgressTracker(
        JsonFileProgressStore(config.DATA_DIR / "progress"),
        JsonFileReportStore(config.OUTPUTS_DIR / "reports"),
        lease_seconds=settings.batch_lease_s,
    )
    service = AssessmentService(
        InMemoryDocumentStore(
            [
                StoredDocument(
                    document_id=document_id,
                    user_id=args.user_id,
                    file_name=doc_path.stem,
                    document_text=text,
                )
            ]
        ),
        FileQuestionnaireProvider(args.questionnaire),
        tracker,
        settings=settings,
    )
    response = service.handle_batch_request(
        {"documentId": document_id, "userId": args.user_id, "batchIndex": args.batch_index}
    )
    if response.get("reportId"):
        report = tracker.reports.get(response["reportId"])
        if report is not None:
            _write_json(output, report.to_wire())
    print(json.dumps(response, indent=2, ensure_ascii=True))
    if not response.get("success"):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
