import io
from datetime import datetime

import pytest
from openpyxl import Workbook

from riskhub.services.tabular_upload import (
    UploadFormatError,
    detect_delimiter,
    normalize_header,
    read_delimited_text,
    read_tabular_upload,
    row_mapping,
    split_delimited_line,
)


def _workbook_bytes(rows: list[list[object]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    workbook.close()
    return buffer.getvalue()


def test_quoted_field_keeps_delimiter_and_escaped_quotes():
    fields = split_delimited_line('A,"Age 5, ""approx.""",3')
    assert fields == ["A", 'Age 5, "approx."', "3"]


def test_unquoted_fields_are_trimmed_but_quoted_whitespace_survives():
    assert split_delimited_line(' a ,  "  b  " , c') == ["a", "  b  ", "c"]


def test_empty_fields_are_kept():
    assert split_delimited_line("a,,c,") == ["a", "", "c", ""]


def test_semicolon_delimiter_needs_a_majority():
    assert detect_delimiter("onset_date;age_y;gender") == ";"
    assert detect_delimiter("onset_date;age_y,gender") == ","
    assert detect_delimiter("onset_date") == ","


def test_header_normalisation():
    assert normalize_header("\ufeff Onset  Date ") == "onset_date"
    assert normalize_header("Age\tY") == "age_y"
    assert normalize_header(None) == ""


def test_byte_order_mark_is_stripped_from_first_header():
    data = "\ufeffOnset Date,Age Y\n2024-01-05,30\n".encode("utf-8")
    table = read_delimited_text(data)
    assert table.headers == ["onset_date", "age_y"]
    assert table.rows == [(2, ["2024-01-05", "30"])]


def test_line_numbers_follow_the_file_and_skip_blank_lines():
    data = b"onset_date,gender\r\n\r\n2024-01-05,M\r2024-01-06,F\n"
    table = read_delimited_text(data)
    assert [line for line, _ in table.rows] == [3, 4]
    assert table.line_count == 3


def test_semicolon_file_is_split_on_semicolons():
    table = read_delimited_text(b"onset_date;province\n05/01/2024;Bangkok, Thailand\n")
    assert table.rows[0][1] == ["05/01/2024", "Bangkok, Thailand"]


def test_thai_windows_encoding_is_decoded():
    data = "province\nเชียงใหม่\n".encode("cp874")
    table = read_delimited_text(data)
    assert table.rows[0][1] == ["เชียงใหม่"]


def test_empty_upload_has_no_lines():
    table = read_delimited_text(b"\n\n")
    assert table.headers == []
    assert table.line_count == 0


def test_excel_workbook_keeps_native_values():
    data = _workbook_bytes(
        [
            ["Onset Date", "Age Y", "Province"],
            [datetime(2024, 1, 5), 30, " Bangkok "],
            [None, None, None],
            ["10/03/2024", 41.0, "Chiang Mai"],
        ]
    )
    table = read_tabular_upload(data, "cases.XLSX")
    assert table.headers == ["onset_date", "age_y", "province"]
    assert [line for line, _ in table.rows] == [2, 4]
    assert table.rows[0][1][0] == datetime(2024, 1, 5)
    assert table.rows[0][1][2] == "Bangkok"


def test_corrupt_excel_upload_is_reported():
    with pytest.raises(UploadFormatError):
        read_tabular_upload(b"not a workbook", "cases.xlsx")


def test_row_mapping_pads_short_rows():
    assert row_mapping(["a", "b", ""], ["1"]) == {"a": "1", "b": "", "col_2": ""}
