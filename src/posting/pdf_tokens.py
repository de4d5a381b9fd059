from __future__ import annotations

import io
from typing import Iterator

import pdfplumber

from inventory.data_models import TextToken


def extract_page_tokens(pdf_bytes: bytes) -> Iterator[list[TextToken]]:
    """Yield the positioned words of each page.

    pdfplumber measures ``top``/``bottom`` from the top edge of the page; tokens
    are converted to PDF user space (origin bottom-left) using the word baseline.
    """
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for page in pdf.pages:
            words = page.extract_words(keep_blank_chars=False, use_text_flow=False)
            yield [
                TextToken(x=float(w["x0"]), y=float(page.height) - float(w["bottom"]), text=w["text"])
                for w in words
            ]
