import posixpath
import re

MAX_SHEET_NAME_LENGTH = 31
DEFAULT_SHEET_NAME = "Sheet"
INVALID_SHEET_CHARS = re.compile(r"[\\/*?:\[\]]")


def sheet_label(source_name):
    """Final path segment of a blob or file name, without its extension."""
    base = posixpath.basename(source_name.replace("\\", "/"))
    stem, _ = posixpath.splitext(base)
    # splitext keeps leading-dot names whole: ".csv" has no stem
    if stem.startswith(".") and "." not in stem[1:]:
        return ""
    return stem


def sanitize_sheet_name(name):
    sanitized = INVALID_SHEET_CHARS.sub("_", name or "")
    if not sanitized.strip():
        sanitized = DEFAULT_SHEET_NAME
    return sanitized[:MAX_SHEET_NAME_LENGTH]


class SheetNameAllocator:
    """Hands out sanitized worksheet names, unique within one workbook.

    Comparison is case-insensitive, as in Excel. A collision gets ``_1``,
    ``_2``, ... appended, cutting the base short so the whole name still fits
    in 31 characters.
    """

    def __init__(self):
        self._used = set()

    def __contains__(self, name):
        return name.lower() in self._used

    def allocate(self, name):
        base = sanitize_sheet_name(name)
        candidate = base
        suffix = 1
        while candidate.lower() in self._used:
            suffix_text = f"_{suffix}"
            candidate = base[:MAX_SHEET_NAME_LENGTH - len(suffix_text)] + suffix_text
            suffix += 1
        self._used.add(candidate.lower())
        return candidate
