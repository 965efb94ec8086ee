"""Reading the list of files a client should download."""

from pathlib import Path
from typing import List


def read_file_list(path: Path) -> List[str]:
    """
    Read filenames, one per line.

    Surrounding whitespace is stripped and blank lines are skipped.
    Order is preserved; duplicates are kept (each line is one download).
    """
    with open(path, encoding='utf-8') as f:
        return [line.strip() for line in f if line.strip()]
