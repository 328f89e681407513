"""CSV decoding and parsing for contact uploads.

Uploads come from spreadsheets saved on many platforms, so the parser sniffs
BOMs and falls back to Latin-1, picks the delimiter from the header line, and
tolerates ragged rows.
"""

import csv
import io
from dataclasses import dataclass, field

import pandas as pd
from loguru import logger

from crm_api.lib.importer.errors import ImportStructureError

_UTF8_BOM = b"\xef\xbb\xbf"
_UTF16_LE_BOM = b"\xff\xfe"
_UTF16_BE_BOM = b"\xfe\xff"

SAMPLE_HEADERS: dict[str, list[str]] = {
    "user": ["APELLIDO_P", "APELLIDO_M", "NOMBRE", "CELULAR", "CORREO", "EJECUTIVO"],
    "foh": ["phone", "first_name", "last_name", "agent_name", "phone_order"],
    "prospect": ["phone", "first_name", "last_name", "email", "company", "notes"],
}

SAMPLE_ROWS: dict[str, list[list[str]]] = {
    "user": [["Perez", "Gomez", "Juan", "987654321", "juan@email.com", "manager@email.com"]],
    "foh": [
        ["987654321", "Juan", "Perez", "ANDREA GARCIA", "1"],
        ["987654322", "Maria", "Garcia", "BRENDA GONZALEZ", "2"],
    ],
    "prospect": [["987654321", "Juan", "Perez", "juan@email.com", "Empresa SA", "Interesado en producto"]],
}


@dataclass
class ParsedCsv:
    """Header row plus data rows, every row padded to the header width."""

    headers: list[str]
    rows: list[list[str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def decode_csv_bytes(content: bytes) -> str:
    """Decode raw upload bytes to text.

    BOMs win; otherwise strict UTF-8 is attempted and Latin-1 (which never
    fails) is the fallback.

    Args:
        content: Raw file bytes.

    Returns:
        The decoded text without any BOM.
    """
    if content.startswith(_UTF8_BOM):
        return content[len(_UTF8_BOM) :].decode("utf-8", errors="replace")
    if content.startswith(_UTF16_LE_BOM):
        return content[len(_UTF16_LE_BOM) :].decode("utf-16-le", errors="replace")
    if content.startswith(_UTF16_BE_BOM):
        return content[len(_UTF16_BE_BOM) :].decode("utf-16-be", errors="replace")
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Upload is not valid UTF-8, decoding as latin-1")
        return content.decode("latin-1")


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter from the header line.

    Semicolon or tab is chosen only when it strictly outnumbers each other
    candidate; comma is the default.

    Args:
        header_line: First line of the file.

    Returns:
        One of ``","``, ``";"`` or ``"\\t"``.
    """
    commas = header_line.count(",")
    semicolons = header_line.count(";")
    tabs = header_line.count("\t")
    if semicolons > commas and semicolons > tabs:
        return ";"
    if tabs > commas and tabs > semicolons:
        return "\t"
    return ","


def _first_non_blank_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def parse_csv(content: bytes) -> ParsedCsv:
    """Parse an uploaded CSV into headers and trimmed string rows.

    Args:
        content: Raw file bytes.

    Returns:
        ParsedCsv with at least one data row.

    Raises:
        ImportStructureError: If the file is empty or has only a header row.
    """
    text = decode_csv_bytes(content)
    header_line = _first_non_blank_line(text)
    if not header_line:
        msg = "The file is empty"
        raise ImportStructureError(msg)

    delimiter = detect_delimiter(header_line)
    width = len(next(csv.reader([header_line], delimiter=delimiter)))

    def _truncate(bad_line: list[str]) -> list[str]:
        return bad_line[:width]

    frame = pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        quotechar='"',
        doublequote=True,
        engine="python",
        on_bad_lines=_truncate,
    ).fillna("")

    records = [[str(value).strip() for value in row] for row in frame.itertuples(index=False, name=None)]
    if not records:
        msg = "The file is empty"
        raise ImportStructureError(msg)

    headers = records[0]
    rows: list[list[str]] = []
    for record in records[1:]:
        if not any(record):
            continue
        padded = (record + [""] * width)[:width]
        rows.append(padded)

    if not rows:
        msg = "The file has a header row but no data rows"
        raise ImportStructureError(msg)

    logger.debug(f"Parsed CSV with delimiter={delimiter!r}: {len(headers)} columns, {len(rows)} rows")
    return ParsedCsv(headers=headers, rows=rows)


def generate_sample_csv(import_type: str, custom_labels: list[str] | None = None) -> bytes:
    """Build the downloadable sample file for an import type.

    User and FOH samples gain one extra column per tenant custom field label.

    Args:
        import_type: ``user``, ``foh`` or ``prospect``.
        custom_labels: Tenant custom field labels, in display order.

    Returns:
        UTF-8 bytes starting with a BOM so spreadsheet apps pick the encoding.
    """
    key = import_type if import_type in SAMPLE_HEADERS else "user"
    labels = list(custom_labels or []) if key != "prospect" else []
    headers = SAMPLE_HEADERS[key] + labels
    rows = [row + [f"Valor {i + 1}" for i in range(len(labels))] for row in SAMPLE_ROWS[key]]
    frame = pd.DataFrame(rows, columns=headers)
    body = frame.to_csv(index=False, lineterminator="\n")
    return _UTF8_BOM + body.encode("utf-8")
