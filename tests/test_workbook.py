import io
import re
import zipfile

import pytest
from openpyxl import load_workbook

from csv_merge.errors import SourceNotFoundError
from csv_merge.workbook import (SourceRecord, build_workbook,
                                build_workbook_bytes, iter_csv_rows,
                                staged_workbook)


def chunked(data, size=5):
    return [data[i:i + size] for i in range(0, len(data), size)]


def load(content):
    return load_workbook(io.BytesIO(content))


def sheet_ids(content):
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        workbook_xml = archive.read("xl/workbook.xml").decode("utf-8")
    return [
        (name, int(sheet_id))
        for name, sheet_id in re.findall(r'<sheet[^>]*name="([^"]+)"[^>]*sheetId="(\d+)"', workbook_xml)
    ]


def test_duplicate_source_names_get_suffixed_sheets():
    sources = [
        SourceRecord("jan.csv", chunked(b"a,b\n1,2\n")),
        SourceRecord("other/jan.csv", chunked(b"c,d\n3,4\n5,6\n")),
    ]
    content, sheets = build_workbook_bytes(sources)

    assert [(s.name, s.sheet_id, s.row_count) for s in sheets] == [("jan", 1, 2), ("jan_1", 2, 3)]
    workbook = load(content)
    assert workbook.sheetnames == ["jan", "jan_1"]
    assert workbook["jan"].max_row == 2
    assert workbook["jan_1"].max_row == 3
    assert sheet_ids(content) == [("jan", 1), ("jan_1", 2)]


def test_rows_are_written_field_for_field_as_text():
    csv_bytes = b"id,amount,when\n007,1.50,2024-01-31\n=1+2,-3,TRUE\n"
    content, _ = build_workbook_bytes([SourceRecord("data.csv", chunked(csv_bytes))])

    sheet = load(content)["data"]
    rows = list(sheet.iter_rows(values_only=True))
    assert rows == [
        ("id", "amount", "when"),
        ("007", "1.50", "2024-01-31"),
        ("=1+2", "-3", "TRUE"),
    ]
    assert all(cell.data_type == "s" for row in sheet.iter_rows() for cell in row)


def test_cells_are_inline_strings():
    content, _ = build_workbook_bytes([SourceRecord("n.csv", [b"1,2\n"])])
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        sheet_xml = archive.read("xl/worksheets/sheet1.xml").decode("utf-8")
    assert sheet_xml.count('t="inlineStr"') == 2
    assert 't="n"' not in sheet_xml


def test_sheet_order_follows_input_order():
    names = ["zeta.csv", "alpha.csv", "mid.csv"]
    content, _ = build_workbook_bytes([SourceRecord(n, [b"x\n"]) for n in names])
    assert load(content).sheetnames == ["zeta", "alpha", "mid"]


def test_empty_fields_keep_their_columns():
    content, _ = build_workbook_bytes([SourceRecord("gaps.csv", [b"a,,c\n"])])
    assert list(load(content)["gaps"].iter_rows(values_only=True)) == [("a", None, "c")]


def test_file_object_sources_are_supported():
    content, sheets = build_workbook_bytes([SourceRecord("f.csv", io.BytesIO(b"k,v\nx,y\n"))])
    assert sheets[0].row_count == 2


def test_extension_only_name_becomes_sheet():
    content, sheets = build_workbook_bytes([SourceRecord(".csv", [b"a\n"])])
    assert sheets[0].name == "Sheet"


def test_no_sources_is_not_found():
    with pytest.raises(SourceNotFoundError):
        build_workbook([], io.BytesIO())


def test_control_characters_are_dropped():
    content, _ = build_workbook_bytes([SourceRecord("c.csv", [b"a\x01b,ok\n"])])
    assert list(load(content)["c"].iter_rows(values_only=True)) == [("ab", "ok")]


def test_build_workbook_writes_to_path(tmp_path):
    target = tmp_path / "out.xlsx"
    build_workbook([SourceRecord("p.csv", [b"1\n"])], str(target))
    assert load_workbook(target).sheetnames == ["p"]


# --- CSV parsing ---

def test_rows_split_across_chunks_and_multibyte_characters():
    chunks = [b"na", b"me,caf\xc3", b"\xa9\r\nbob,th", b"\xc3\xa9\n"]
    assert list(iter_csv_rows(chunks)) == [["name", "café"], ["bob", "thé"]]


def test_byte_order_mark_is_removed():
    assert list(iter_csv_rows([b"\xef\xbb\xbfh1,h2\n"])) == [["h1", "h2"]]


def test_quoted_field_with_newline_stays_one_cell():
    rows = list(iter_csv_rows(chunked(b'x,"line1\nline2",y\n', 3)))
    assert rows == [["x", "line1\nline2", "y"]]


def test_ragged_rows_and_stray_quotes_are_tolerated():
    rows = list(iter_csv_rows([b'a,b,c\nd\ne"f,g\n']))
    assert rows == [["a", "b", "c"], ["d"], ['e"f', "g"]]


def test_last_line_without_newline():
    assert list(iter_csv_rows([b"a,b\nc,d"])) == [["a", "b"], ["c", "d"]]


def test_invalid_utf8_is_replaced():
    assert list(iter_csv_rows([b"ok,\xff\n"])) == [["ok", "�"]]


def test_header_row_is_plain_data():
    rows = list(iter_csv_rows([b"Name,Amount\n"]))
    assert rows == [["Name", "Amount"]]



def test_carriage_return_only_line_endings():
    assert list(iter_csv_rows([b"a,b\rc,d\re,f\r"])) == [["a", "b"], ["c", "d"], ["e", "f"]]


def test_crlf_split_across_chunks_is_one_line_ending():
    chunks = [b"a,b\r", b"\nc,d\r", b"\ne,f"]
    assert list(iter_csv_rows(chunks)) == [["a", "b"], ["c", "d"], ["e", "f"]]


def test_mixed_line_endings():
    assert list(iter_csv_rows([b"1\r\n2\r3\n4"])) == [["1"], ["2"], ["3"], ["4"]]


def test_unterminated_quote_keeps_following_rows():
    csv_bytes = b'id,note\n1,"never closed\n2,fine\n3,also fine\n'
    content, sheets = build_workbook_bytes([SourceRecord("notes.csv", chunked(csv_bytes, 4))])

    assert sheets[0].row_count == 4
    assert list(load(content)["notes"].iter_rows(values_only=True)) == [
        ("id", "note"),
        ('1,"never closed', None),
        ("2", "fine"),
        ("3", "also fine"),
    ]


def test_rows_after_a_bad_record_survive_in_later_sheets():
    sources = [
        SourceRecord("bad.csv", [b'a,"b\rc,d\r']),
        SourceRecord("good.csv", [b"x,y\n"]),
    ]
    content, sheets = build_workbook_bytes(sources)

    assert [s.name for s in sheets] == ["bad", "good"]
    workbook = load(content)
    assert list(workbook["bad"].iter_rows(values_only=True)) == [('a,"b', None), ("c", "d")]
    assert list(workbook["good"].iter_rows(values_only=True)) == [("x", "y")]


# --- staging ---

def test_staged_workbook_is_closed_after_error(track_staging):
    with pytest.raises(RuntimeError):
        with staged_workbook() as staging:
            staging.write(b"partial")
            raise RuntimeError("boom")
    assert len(track_staging) == 1
    assert track_staging[0].closed


def test_build_workbook_bytes_releases_staging(track_staging):
    build_workbook_bytes([SourceRecord("a.csv", [b"1\n"])])
    assert track_staging and all(handle.closed for handle in track_staging)
