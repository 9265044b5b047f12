"""
Knowledge-base corpus loading.

The corpus is a JSON array of {"chunk": str, "vector": [float, ...]}
produced by an offline ingestion step. It is loaded once at process start
and shared read-only by every session.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from callassist.models import CorpusEntry

logger = logging.getLogger(__name__)


def parse_corpus(records: list) -> List[CorpusEntry]:
    """
    Validate raw corpus records.

    Invalid records and records whose vector dimension differs from the
    first valid record are skipped with a warning.

    Args:
        records: Decoded JSON array

    Returns:
        Corpus entries in file order
    """
    entries: List[CorpusEntry] = []
    dimension = None
    skipped = 0

    for index, record in enumerate(records):
        try:
            entry = CorpusEntry.model_validate(record)
        except ValidationError as e:
            logger.warning(f"Skipping invalid corpus record #{index}: {e.error_count()} errors")
            skipped += 1
            continue

        if not entry.vector:
            logger.warning(f"Skipping corpus record #{index}: empty vector")
            skipped += 1
            continue

        if dimension is None:
            dimension = len(entry.vector)
        elif len(entry.vector) != dimension:
            logger.warning(
                f"Skipping corpus record #{index}: dimension {len(entry.vector)} != {dimension}"
            )
            skipped += 1
            continue

        entries.append(entry)

    if skipped:
        logger.warning(f"Skipped {skipped} of {len(records)} corpus records")
    return entries


def load_corpus(path: Union[str, Path]) -> List[CorpusEntry]:
    """
    Load the pre-embedded corpus from disk.

    A missing file is not fatal: sessions run without retrieval.

    Args:
        path: Path to the vectors JSON file

    Returns:
        Corpus entries (empty if the file is missing)

    Raises:
        ValueError: If the file exists but is not a JSON array
    """
    corpus_path = Path(path).resolve()

    if not corpus_path.exists():
        logger.warning(
            f"Vector file {corpus_path} not found - run the ingestion step first. "
            f"Continuing without knowledge base."
        )
        return []

    with corpus_path.open("r", encoding="utf-8") as f:
        records = json.load(f)

    if not isinstance(records, list):
        raise ValueError(f"Corpus file {corpus_path} must contain a JSON array")

    entries = parse_corpus(records)
    logger.info(f"Loaded {len(entries)} vectors from {corpus_path}")
    return entries
