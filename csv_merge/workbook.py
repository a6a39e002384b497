import codecs
import csv
import logging
import re
import sys
import tempfile
from contextlib import contextmanager
from typing import Iterable, List, NamedTuple

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .errors import SourceNotFoundError
from .sheet_names import SheetNameAllocator, sheet_label

READ_SIZE = 1024 * 64

# Single fields in exported reports can be large; the csv default is 128KB.
csv.field_size_limit(min(sys.maxsize, 2 ** 31 - 1))


class SourceRecord(NamedTuple):
    name: str
    content: object   # iterable of bytes chunks, or a binary file object


class WorksheetInfo(NamedTuple):
    name: str
    sheet_id: int
    row_count: int


def _iter_chunks(content):
    if hasattr(content, "read"):
        return iter(lambda: content.read(READ_SIZE), b"")
    return iter(content)


LINE_END = re.compile(r"\r\n|\r|\n")


def _iter_lines(chunks, encoding="utf-8-sig"):
    """Decode a stream of byte chunks and yield text lines with their endings.

    ``\\r\\n``, ``\\r`` and ``\\n`` all end a line. Undecodable bytes are
    replaced rather than failing the whole sheet.
    """
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    pending = ""
    for chunk in chunks:
        pending += decoder.decode(chunk)
        start = 0
        for match in LINE_END.finditer(pending):
            # A trailing "\r" may be the first half of a "\r\n" split across chunks.
            if match.end() == len(pending) and match.group() == "\r":
                break
            yield pending[start:match.end()]
            start = match.end()
        pending = pending[start:]
    pending += decoder.decode(b"", final=True)
    start = 0
    for match in LINE_END.finditer(pending):
        yield pending[start:match.end()]
        start = match.end()
    if pending[start:]:
        yield pending[start:]


class _LineTracker:
    # Keeps the raw lines of the current record so a bad record can still be written.
    def __init__(self, lines):
        self._lines = iter(lines)
        self.record = []
        self.exhausted = False

    def __iter__(self):
        return self

    def __next__(self):
        try:
            line = next(self._lines)
        except StopIteration:
            self.exhausted = True
            raise
        self.record.append(line)
        return line


def iter_csv_rows(content):
    """Yield each CSV record of ``content`` as a list of strings.

    No header handling: the first record is data like every other one.
    Stray quotes and ragged rows come through as parsed; a record the parser
    rejects outright is yielded as one field holding the raw text. A quote
    left open until the end of input keeps only its first line as raw text,
    and the lines after it are parsed again as ordinary records.
    """
    lines = _iter_lines(_iter_chunks(content))
    while lines is not None:
        tracker = _LineTracker(lines)
        reader = csv.reader(tracker, strict=False)
        lines = None
        while True:
            tracker.record = []
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as exc:
                logging.warning(f"Malformed CSV line {reader.line_num} kept as raw text: {exc}")
                row = ["".join(tracker.record).rstrip("\r\n")]
            else:
                if tracker.exhausted and len(tracker.record) > 1:
                    logging.warning(
                        f"Unterminated quote at CSV line {reader.line_num - len(tracker.record) + 1} "
                        "kept as raw text"
                    )
                    yield [tracker.record[0].rstrip("\r\n")]
                    lines = tracker.record[1:]
                    break
            yield row


def _text_cell(worksheet, value):
    # Explicit string type: "=..." stays text and nothing is read as a number.
    cell = WriteOnlyCell(worksheet, value=ILLEGAL_CHARACTERS_RE.sub("", value))
    cell.data_type = "s"
    return cell


def write_worksheet(worksheet, content):
    row_count = 0
    for row in iter_csv_rows(content):
        worksheet.append([_text_cell(worksheet, value or "") for value in row])
        row_count += 1
    return row_count


def build_workbook(sources: Iterable[SourceRecord], output) -> List[WorksheetInfo]:
    """Stream every source into its own worksheet and save to ``output``.

    ``output`` is a path or a writable binary file object. Sheets keep the
    input order and get ids 1..N. Each source is read exactly once, row by
    row, and the write-only workbook never holds a whole sheet in memory.
    """
    workbook = Workbook(write_only=True)
    names = SheetNameAllocator()
    sheets = []

    for sheet_id, source in enumerate(sources, 1):
        sheet_name = names.allocate(sheet_label(source.name))
        worksheet = workbook.create_sheet(title=sheet_name)
        row_count = write_worksheet(worksheet, source.content)
        sheets.append(WorksheetInfo(sheet_name, sheet_id, row_count))
        logging.info(f"Sheet {sheet_id} '{sheet_name}' <- {source.name} ({row_count} rows)")

    if not sheets:
        raise SourceNotFoundError("No CSV sources to convert.")

    workbook.save(output)
    return sheets


@contextmanager
def staged_workbook():
    """Anonymous temp file for a workbook; removed on every exit path."""
    with tempfile.TemporaryFile(suffix=".xlsx") as staging:
        yield staging


def build_workbook_bytes(sources):
    with staged_workbook() as staging:
        sheets = build_workbook(sources, staging)
        staging.seek(0)
        return staging.read(), sheets
