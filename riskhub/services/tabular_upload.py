"""Read uploaded delimited text or Excel workbooks into header + numbered rows."""
from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

BYTE_ORDER_MARK = "\ufeff"
_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_WHITESPACE_RUN = re.compile(r"\s+")
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


class UploadFormatError(ValueError):
    """Raised when an uploaded file cannot be decoded or read."""


@dataclass
class TabularData:
    headers: list[str]
    # (1-based line number in the source file, cell values)
    rows: list[tuple[int, list[Any]]] = field(default_factory=list)

    @property
    def line_count(self) -> int:
        return len(self.rows) + (1 if self.headers else 0)


def decode_bytes(data: bytes) -> str:
    for encoding in ("utf-8-sig", "utf-8", "cp874", "latin-1"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise UploadFormatError("Unable to decode file. Use UTF-8 encoding.")


def split_lines(text_data: str) -> list[tuple[int, str]]:
    """Split on any newline convention, keeping physical line numbers and dropping blank lines."""
    if text_data.startswith(BYTE_ORDER_MARK):
        text_data = text_data[1:]
    numbered: list[tuple[int, str]] = []
    for index, line in enumerate(_LINE_BREAK.split(text_data), start=1):
        stripped = line.rstrip()
        if stripped:
            numbered.append((index, stripped))
    return numbered


def detect_delimiter(header_line: str) -> str:
    if header_line.count(";") > header_line.count(","):
        return ";"
    return ","


def normalize_header(value: Any) -> str:
    text_value = "" if value is None else str(value)
    text_value = text_value.replace(BYTE_ORDER_MARK, "").strip().lower()
    return _WHITESPACE_RUN.sub("_", text_value)


def split_delimited_line(line: str, delimiter: str = ",") -> list[str]:
    """
    Split one line into fields.

    Double quotes group a field, a doubled quote inside a quoted field is a
    literal quote and the delimiter inside quotes is data. Unquoted text is
    trimmed; whitespace inside the quotes is preserved.
    """
    fields: list[str] = []
    # Each entry is (character, was_inside_quotes).
    current: list[tuple[str, bool]] = []
    in_quotes = False
    quoted = False
    index = 0
    length = len(line)

    while index < length:
        char = line[index]
        if char == '"':
            if in_quotes and index + 1 < length and line[index + 1] == '"':
                current.append(('"', True))
                index += 2
                continue
            in_quotes = not in_quotes
            quoted = True
            index += 1
            continue
        if char == delimiter and not in_quotes:
            fields.append(_finish_field(current, quoted))
            current = []
            quoted = False
            index += 1
            continue
        current.append((char, in_quotes))
        index += 1

    fields.append(_finish_field(current, quoted))
    return fields


def _finish_field(chars: list[tuple[str, bool]], quoted: bool) -> str:
    if not quoted:
        return "".join(char for char, _ in chars).strip()
    start, end = 0, len(chars)
    while start < end and not chars[start][1] and chars[start][0].isspace():
        start += 1
    while end > start and not chars[end - 1][1] and chars[end - 1][0].isspace():
        end -= 1
    return "".join(char for char, _ in chars[start:end])


def read_delimited_text(data: bytes) -> TabularData:
    lines = split_lines(decode_bytes(data))
    if not lines:
        return TabularData(headers=[])

    _, header_line = lines[0]
    delimiter = detect_delimiter(header_line)
    headers = [normalize_header(value) for value in split_delimited_line(header_line, delimiter)]
    rows = [(line_no, split_delimited_line(line, delimiter)) for line_no, line in lines[1:]]
    return TabularData(headers=headers, rows=rows)


def is_excel_file(filename: Optional[str]) -> bool:
    if not filename:
        return False
    return Path(filename).suffix.lower() in EXCEL_SUFFIXES


def read_excel_workbook(data: bytes) -> TabularData:
    try:
        workbook = load_workbook(filename=io.BytesIO(data), read_only=True, data_only=True)
    except InvalidFileException as exc:
        raise UploadFormatError("Uploaded Excel file is invalid.") from exc
    except (zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
        raise UploadFormatError("Unable to read the uploaded Excel file.") from exc

    headers: list[str] = []
    rows: list[tuple[int, list[Any]]] = []
    try:
        sheet = workbook.active
        for row_number, values in enumerate(sheet.iter_rows(values_only=True), start=1):
            cells = [_normalize_excel_cell(value) for value in values]
            if not any(cell not in (None, "") for cell in cells):
                continue
            if not headers:
                headers = [normalize_header(cell) for cell in cells]
                continue
            rows.append((row_number, cells))
    finally:
        workbook.close()

    return TabularData(headers=headers, rows=rows)


def _normalize_excel_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (datetime, date, int, float)) and not isinstance(value, bool):
        return value
    return str(value).strip()


def read_tabular_upload(data: bytes, filename: Optional[str]) -> TabularData:
    if is_excel_file(filename):
        return read_excel_workbook(data)
    return read_delimited_text(data)


def row_mapping(headers: Sequence[str], cells: Sequence[Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for index, header in enumerate(headers):
        key = header or f"col_{index}"
        mapped[key] = cells[index] if index < len(cells) else ""
    return mapped
