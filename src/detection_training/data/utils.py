"""Utility functions for the data pipeline."""

from pathlib import Path

ANNOTATIONS_FILENAME = "annotations.jsonl"


def find_annotation_files(root: Path, filename: str = ANNOTATIONS_FILENAME) -> list[Path]:
    """Recursively find annotation files named ``filename`` under ``root``.

    Returns a sorted list so that example order is deterministic.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Dataset root {root} is not a directory")
    return sorted(p for p in root.rglob(filename) if p.is_file())
