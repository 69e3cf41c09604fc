#!/usr/bin/env python
"""CLI for analyzing a batch of scientific PDFs."""
import argparse
import asyncio
import json
import logging
from pathlib import Path
from paper_evidence.analysis_service import (
    AnalysisOptions,
    AnalysisRequest,
    ScientificAnalysisService,
)
from paper_evidence.config import Config
from paper_evidence.evidence_classifier import aggregate_evidence, build_evidence_report
from paper_evidence.pipeline import IngestionPipeline
from paper_evidence.repository import SQLiteRepository


def _truncate(s: str, maxlen: int = 60) -> str:
    return s[:maxlen - 1] + "…" if len(s) > maxlen else s


def main():
    parser = argparse.ArgumentParser(description="Extract and analyze numeric evidence from PDFs")
    parser.add_argument("paths", nargs="+", help="PDF files or directories containing PDFs")
    parser.add_argument("--config", type=str, help="Path to config file")
    parser.add_argument("--owner", type=str, help="Owner namespace (overrides config)")
    parser.add_argument("--concurrency", type=int, help="Files analyzed at once")
    parser.add_argument("--min-confidence", type=float, help="Table trust threshold (0-1)")
    parser.add_argument("--timeout", type=float, help="Per-file timeout in seconds")
    parser.add_argument("--skip-markdown", action="store_true", help="Skip Markdown rendering and prose fallback")
    parser.add_argument("--no-analysis", action="store_true", help="Skip regression/trend/anomaly analysis")
    parser.add_argument("--force", action="store_true", help="Re-extract files that already completed")
    parser.add_argument("--report", type=str, metavar="FILE", help="Output analysis report to FILE (.json or .md)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    config = Config.load(args.config)

    # Override config from CLI flags
    if args.owner:
        config.owner_id = args.owner
    if args.min_confidence is not None:
        config.min_table_confidence = args.min_confidence
    if args.concurrency is not None:
        config.batch_concurrency = args.concurrency

    errors = config.validate()
    if errors:
        for e in errors:
            logging.error(e)
        return 1

    pdf_paths: list[Path] = []
    for raw in args.paths:
        path = Path(raw).expanduser()
        if path.is_dir():
            pdf_paths.extend(sorted(path.glob("*.pdf")))
        elif path.is_file():
            pdf_paths.append(path)
        else:
            logging.warning(f"Skipping missing path: {raw}")
    if not pdf_paths:
        logging.error("No PDF files to analyze")
        return 1

    options = AnalysisOptions(
        run_analysis=not args.no_analysis,
        skip_markdown=args.skip_markdown,
        timeout=args.timeout,
        force_reprocess=args.force,
    )
    requests = [
        AnalysisRequest(
            owner_id=config.owner_id,
            data=path.read_bytes(),
            file_name=path.name,
            options=options,
        )
        for path in pdf_paths
    ]

    with SQLiteRepository(config.db_path) as repository:
        service = ScientificAnalysisService(
            IngestionPipeline.from_config(config, repository),
            default_timeout=config.analysis_timeout,
            batch_concurrency=config.batch_concurrency,
        )
        envelope = asyncio.run(service.run_batch(requests))

    for status, label in [
        ("completed", "Completed"),
        ("partial", "Partial (no analysis)"),
        ("failed", "Failed"),
    ]:
        items = [r for r in envelope.results if r.status == status]
        if not items:
            continue
        print(f"\n{label} ({len(items)}):")
        for r in items:
            detail = f"  {_truncate(r.observability.file_name)}"
            if r.summary.table_count or r.summary.data_point_count:
                detail += (
                    f"  [{r.summary.trusted_table_count}/{r.summary.table_count} tables trusted, "
                    f"{r.summary.data_point_count} points]"
                )
            if status == "failed" and r.warnings:
                detail += f": {r.warnings[0]}"
            print(detail)

    print(f"\nAnalysis summary:")
    print(f"  Files:     {envelope.pdf_count}")
    print(f"  Completed: {envelope.completed_count}")
    print(f"  Partial:   {envelope.partial_count}")
    print(f"  Failed:    {envelope.failed_count}")

    if args.report:
        report_path = Path(args.report)
        if report_path.suffix == ".json":
            report_path.write_text(json.dumps(envelope.to_dict(), indent=2))
        else:
            rows = aggregate_evidence(
                (item, r.observability.file_name)
                for r in envelope.results
                for item in r.numeric_evidence
            )
            warnings = [w for r in envelope.results for w in r.warnings]
            evidence = build_evidence_report(
                rows, [r.observability.file_name for r in envelope.results], warnings
            )
            report_path.write_text(envelope.to_markdown() + "\n\n" + evidence + "\n")

        print(f"\nReport written to: {report_path}")

    return 0 if envelope.failed_count == 0 else 2


if __name__ == "__main__":
    exit(main())
