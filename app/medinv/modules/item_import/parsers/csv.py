from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field

# Field -> header markers. A header column belongs to the first field (in this
# order) whose marker it contains, case-insensitive; a column is claimed once.
HEADER_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("name", ("naam", "name")),
    ("category", ("categorie", "category")),
    ("description", ("beschrijving", "description")),
    ("search_terms", ("zoekterm", "search")),
    ("ambulance_post_id", ("post",)),
    ("cabinet_id", ("kast", "cabinet")),
    ("drawer", ("lade", "drawer")),
    ("contact_person", ("contact",)),
    ("photo_url", ("foto", "photo")),
)
REQUIRED_FIELDS = ("name", "category")

TEMPLATE_HEADERS = (
    "name",
    "category",
    "description",
    "search-terms",
    "ambulance-post-id",
    "cabinet",
    "drawer",
    "contact-person",
    "photo-url",
)
TEMPLATE_EXAMPLE_ROWS = (
    ("Verband gaas", "Wondverzorging", "Steriel verbandgaas 10x10cm", "gauze,bandage,wond", "", "", "", "", ""),
    ("Infuus set", "IV Therapie", "Standaard infuus set met naald", "iv,needle,drip", "", "", "", "", ""),
)


class ImportStructureError(ValueError):
    """The file as a whole cannot be imported (no data rows, required columns missing)."""


@dataclass
class ImportRow:
    row_number: int
    name: str = ""
    category: str = ""
    description: str = ""
    search_terms: str = ""
    ambulance_post_id: str = ""
    cabinet_id: str = ""
    drawer: str = ""
    contact_person: str = ""
    photo_url: str = ""
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def has_location(self) -> bool:
        return bool(self.ambulance_post_id and self.cabinet_id)

    def item_payload(self) -> dict:
        return {
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "search_terms": self.search_terms,
            "photo_url": self.photo_url,
        }


@dataclass
class ParsedImport:
    columns: dict[str, int]
    rows: list[ImportRow]

    @property
    def valid_rows(self) -> list[ImportRow]:
        return [r for r in self.rows if r.valid]

    @property
    def invalid_rows(self) -> list[ImportRow]:
        return [r for r in self.rows if not r.valid]


def _clean_cell(value: str | None) -> str:
    return (value or "").strip().strip('"').strip()


def map_header_columns(headers: list[str]) -> dict[str, int]:
    normalized = [_clean_cell(h).lower() for h in headers]
    claimed: set[int] = set()
    columns: dict[str, int] = {}
    for field_name, markers in HEADER_MARKERS:
        for idx, header in enumerate(normalized):
            if idx in claimed:
                continue
            if any(m in header for m in markers):
                columns[field_name] = idx
                claimed.add(idx)
                break
    return columns


def parse_item_records(records: list[tuple[int, list[str]]]) -> ParsedImport:
    """
    Validate a header row plus data rows, however they were read.

    Each record carries the line (or sheet row) it came from, so blank lines
    do not shift the row numbers shown to the user. Raises ImportStructureError
    when there are no data rows or the header lacks a name or category column;
    nothing is parsed in that case.
    """
    records = [(n, r) for n, r in records if any(_clean_cell(v) for v in r)]
    if len(records) < 2:
        raise ImportStructureError("The file must contain a header row and at least one data row.")

    columns = map_header_columns(records[0][1])
    missing = [f for f in REQUIRED_FIELDS if f not in columns]
    if missing:
        raise ImportStructureError("The file must contain the columns 'Naam' (name) and 'Categorie' (category).")

    rows: list[ImportRow] = []
    for row_number, values in records[1:]:
        cells = {f: _clean_cell(values[i]) if i < len(values) else "" for f, i in columns.items()}
        row = ImportRow(row_number=row_number, **cells)
        if not row.name:
            row.errors.append("Naam (name) is required.")
        if not row.category:
            row.errors.append("Categorie (category) is required.")
        rows.append(row)
    return ParsedImport(columns=columns, rows=rows)


def parse_item_csv(file_bytes: bytes) -> ParsedImport:
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.reader(io.StringIO(text), delimiter=",", quotechar='"', skipinitialspace=True)
    records: list[tuple[int, list[str]]] = []
    last_line = 0
    for values in reader:
        # a quoted field may span lines; the record starts after the previous one ends
        records.append((last_line + 1, values))
        last_line = reader.line_num
    return parse_item_records(records)


def build_template_csv() -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(TEMPLATE_EXAMPLE_ROWS)
    return buf.getvalue().encode("utf-8")
