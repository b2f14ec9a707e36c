"""Tabular extraction, filtering and artifact writing for the facility export.

The exported report is comma delimited text whose column order and casing
change between RecTrac versions, so columns are bound by header pattern
rather than position.
"""
import csv
import io
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable

from rectrac_export.errors import FormatFailure

OUTPUT_HEADER = ("facClass", "facLocation", "facCode", "facShortDesc", "status")

# description is bound first so the other patterns never steal its column
COLUMN_PATTERNS = {
    "fac_short_desc": r"short.*desc",
    "fac_class": r"fac.*class|^\s*class\s*$",
    "fac_location": r"fac.*loc|^\s*location\s*$",
    "fac_code": r"fac.*code|^\s*code\s*$",
    "status": r"status",
}


@dataclass(frozen=True)
class ReportRow:
    fac_class: str = ""
    fac_location: str = ""
    fac_code: str = ""
    fac_short_desc: str = ""
    status: str = ""

    @property
    def key(self) -> str:
        return self.fac_code or self.fac_short_desc

    def as_record(self) -> dict[str, str]:
        return dict(zip(OUTPUT_HEADER, asdict(self).values()))

    def values(self) -> list[str]:
        return list(asdict(self).values())


@dataclass(frozen=True)
class ColumnBinding:
    fac_short_desc: int
    fac_class: int | None = None
    fac_location: int | None = None
    fac_code: int | None = None
    status: int | None = None

    def cell(self, row: list[str], name: str) -> str:
        index = getattr(self, name)
        if index is None or index >= len(row):
            return ""
        return row[index].strip()

    def build(self, row: list[str]) -> ReportRow:
        return ReportRow(**{name: self.cell(row, name) for name in COLUMN_PATTERNS})


@dataclass
class ExtractionResult:
    rows: list[ReportRow] = field(default_factory=list)
    binding: ColumnBinding | None = None
    data_rows: int = 0

    @property
    def shape_recognized(self) -> bool:
        return self.binding is not None

    def __iter__(self):
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


def decode(raw: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return raw.decode("latin-1")


def looks_like_html(text: str) -> bool:
    head = text.lstrip()[:512].lower()
    return head.startswith("<!doctype html") or head.startswith("<html") or "<body" in head


def looks_like_delimited(raw: bytes) -> bool:
    text = decode(raw[:4096])
    if not text.strip() or looks_like_html(text):
        return False
    first_line = text.lstrip().splitlines()[0]
    return "," in first_line


def parse_delimited(text: str, delimiter: str = ",") -> list[list[str]]:
    """Rows of ``text``; handles quoted delimiters, doubled quotes and CRLF or LF."""
    try:
        rows = list(csv.reader(io.StringIO(text, newline=""), delimiter=delimiter))
    except csv.Error as e:
        raise FormatFailure(f"Report is not valid delimited text: {e}", phase="format") from e
    return [row for row in rows if any(cell.strip() for cell in row)]


def format_delimited(rows: Iterable[Iterable[str]], quote_all: bool = False) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def bind_columns(header: list[str]) -> ColumnBinding | None:
    """Match header cells to report fields; None when no description column exists."""
    bound: dict[str, int] = {}
    used: set[int] = set()
    for name, pattern in COLUMN_PATTERNS.items():
        for index, cell in enumerate(header):
            if index in used:
                continue
            if re.search(pattern, cell.strip(), re.IGNORECASE):
                bound[name] = index
                used.add(index)
                break
    if "fac_short_desc" not in bound:
        return None
    return ColumnBinding(**bound)


def matches_any(description: str, terms: Iterable[str]) -> bool:
    lowered = description.lower()
    return any(term.lower() in lowered for term in terms if term)


def extract_and_filter(raw: bytes | str, match_terms: Iterable[str]) -> ExtractionResult:
    text = decode(raw) if isinstance(raw, bytes) else raw
    if not text.strip():
        raise FormatFailure("Captured report is empty", phase="format")
    if looks_like_html(text):
        raise FormatFailure("Captured report is an HTML page, not delimited text", phase="format")

    rows = parse_delimited(text)
    if not rows:
        raise FormatFailure("Captured report has no rows", phase="format")

    binding = bind_columns(rows[0])
    if binding is None:
        return ExtractionResult(data_rows=len(rows) - 1)

    terms = [t for t in match_terms if t]
    kept: dict[str, ReportRow] = {}
    for row in rows[1:]:
        record = binding.build(row)
        if matches_any(record.fac_short_desc, terms):
            kept[record.key] = record

    return ExtractionResult(rows=list(kept.values()), binding=binding, data_rows=len(rows) - 1)


def to_csv(rows: Iterable[ReportRow]) -> str:
    """Artifact text; a placeholder row of empty strings stands in for zero matches."""
    body = [row.values() for row in rows] or [[""] * len(OUTPUT_HEADER)]
    return ",".join(OUTPUT_HEADER) + "\n" + format_delimited(body, quote_all=True)


def write_artifact(rows: Iterable[ReportRow], path: Path | str) -> bytes:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = to_csv(rows).encode("utf-8")
    path.write_bytes(data)
    return data
