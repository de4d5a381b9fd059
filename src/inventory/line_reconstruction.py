"""
Rebuild visual text lines from positioned tokens.

Report generators often emit one token per glyph run, so rows are recovered by
clustering tokens whose vertical coordinates sit within a small tolerance of the
first token placed on the row, then ordering each row left to right.
"""

from __future__ import annotations

import itertools
import re
from typing import Iterable, Iterator

from inventory.data_models import TextToken

DEFAULT_TOLERANCE = 3.0

# "99 ,377", "99, 377" and "$8 , 495" come from a separator drawn as its own token.
_SPLIT_NUMBER = re.compile(r"(\d)(?:\s+([,.])\s*|([,.])\s+)(\d{3})(?!\d)")
_SPLIT_CURRENCY = re.compile(r"\$\s+(?=\d)")


def repair_split_numbers(line: str) -> str:
    """Collapse numbers that were broken apart around a thousands separator."""
    line = _SPLIT_CURRENCY.sub("$", line)
    previous = None
    while previous != line:
        previous = line
        line = _SPLIT_NUMBER.sub(lambda m: f"{m.group(1)}{m.group(2) or m.group(3)}{m.group(4)}", line)
    return line


def _join(row: list[TextToken]) -> str:
    ordered = sorted(row, key=lambda t: t.x)
    return repair_split_numbers(" ".join(t.text.strip() for t in ordered))


def reconstruct_lines(tokens: Iterable[TextToken], tolerance: float = DEFAULT_TOLERANCE) -> Iterator[str]:
    """Yield the lines of one page, top of page first.

    Vertical coordinates grow upwards (PDF user space), so the page is walked in
    descending ``y``. Whitespace-only tokens are dropped.
    """
    if tolerance < 0:
        raise ValueError("tolerance must be >= 0")

    ordered = sorted((t for t in tokens if t.text and t.text.strip()), key=lambda t: -t.y)
    row: list[TextToken] = []
    anchor = 0.0
    for token in ordered:
        if row and abs(anchor - token.y) <= tolerance:
            row.append(token)
            continue
        if row:
            yield _join(row)
        row = [token]
        anchor = token.y
    if row:
        yield _join(row)


def reconstruct_document(pages: Iterable[Iterable[TextToken]], tolerance: float = DEFAULT_TOLERANCE) -> Iterator[str]:
    return itertools.chain.from_iterable(reconstruct_lines(page, tolerance) for page in pages)
