"""
Turn downloaded document bytes into text for the extraction pipeline.

Text-like files are decoded as-is. Delimited files are rendered as a
markdown table so the model sees rows and columns. Binary formats (PDF,
spreadsheets, word processor files) are not read here.
"""

import csv
import io
import logging
from pathlib import Path

from ..errors import ContentError, UnsupportedDocumentError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".json"}
DELIMITED_EXTENSIONS = {".csv": ",", ".tsv": "\t"}


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _cell(value: str) -> str:
    return value.strip().replace("|", "\\|").replace("\n", " ")


def rows_to_markdown(rows: list[list[str]]) -> str:
    """Render rows as a markdown table; the first row is the header."""
    rows = [row for row in rows if any(cell.strip() for cell in row)]
    if not rows:
        return ""

    width = max(len(row) for row in rows)
    padded = [[_cell(c) for c in row] + [""] * (width - len(row)) for row in rows]

    lines = [
        "| " + " | ".join(padded[0]) + " |",
        "| " + " | ".join(["---"] * width) + " |",
    ]
    for row in padded[1:]:
        lines.append("| " + " | ".join(row) + " |")
    return "\n".join(lines)


def read_document(data: bytes, file_name: str) -> str:
    """
    Extract text from a document.

    Raises:
        UnsupportedDocumentError: Format is not readable as text
        ContentError: File is empty after decoding
    """
    extension = Path(file_name).suffix.lower()

    if extension in DELIMITED_EXTENSIONS:
        reader = csv.reader(io.StringIO(_decode(data)), delimiter=DELIMITED_EXTENSIONS[extension])
        text = rows_to_markdown(list(reader))
    elif extension in TEXT_EXTENSIONS:
        text = _decode(data)
    else:
        raise UnsupportedDocumentError(
            f"Unsupported document format '{extension or 'none'}' for {file_name}"
        )

    if not text.strip():
        raise ContentError(f"Document {file_name} has no text content")

    logger.debug(f"Read {len(text)} characters from {file_name}")
    return text
