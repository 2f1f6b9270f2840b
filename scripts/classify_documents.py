#!/usr/bin/env python3
"""Run the text pre-classifier over local PDF files.

Shows which documents would skip the AI classification call and why.
Useful when tuning the keyword lists.

Usage:
    python scripts/classify_documents.py path/to/pdfs --output results.json
"""

import json
import logging
from pathlib import Path

from services.classification.text_classifier import (
    classify_by_text,
    should_use_text_classification,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def classify_directory(directory: Path, max_pages: int = 3) -> list[dict]:
    """Classify every PDF in a directory.

    Args:
        directory: Folder to scan (recursively)
        max_pages: Leading pages to read per document

    Returns:
        One record per file with verdict, confidence and signals

    Raises:
        FileNotFoundError: If the directory doesn't exist
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    records = []
    for path in sorted(directory.rglob("*.pdf")):
        result = classify_by_text(path.read_bytes(), "application/pdf", max_pages=max_pages)
        records.append(
            {
                "file": str(path),
                "is_likely_invoice": result.is_likely_invoice,
                "confidence": result.confidence,
                "trusted": should_use_text_classification(result),
                "score": result.score,
                "signals": result.signals,
            }
        )
    logger.info(f"Classified {len(records)} documents in {directory}")
    return records


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Text pre-classification of local PDFs")
    parser.add_argument("directory", type=Path, help="Folder containing PDF files")
    parser.add_argument(
        "--max-pages",
        type=int,
        default=3,
        help="Leading pages to read per document",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write results as JSON instead of printing a summary",
    )

    args = parser.parse_args()
    results = classify_directory(args.directory, max_pages=args.max_pages)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(results, f, indent=2)
        logger.info(f"Saved {len(results)} results to {args.output}")
    else:
        for record in results:
            verdict = "invoice" if record["is_likely_invoice"] else "not invoice"
            marker = "*" if record["trusted"] else " "
            print(f"{marker} {verdict:<12} {record['confidence']:<10} {record['file']}")
        skipped = sum(1 for r in results if r["trusted"])
        print(f"\n{skipped}/{len(results)} would skip the AI classification call")
