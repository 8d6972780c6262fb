from __future__ import annotations

import io
import zipfile
from datetime import date, datetime

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.medinv.modules.item_import.parsers.csv import ImportStructureError, ParsedImport, parse_item_records


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Drawer "3" comes back from Excel as 3.0.
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def parse_item_xlsx(file_bytes: bytes) -> ParsedImport:
    """Read the first worksheet of an .xlsx workbook; same columns and validation as CSV."""
    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ImportStructureError(f"The file is not a readable Excel workbook ({e.__class__.__name__}).") from e

    try:
        ws = wb.worksheets[0]
        records = [
            (n, [_cell_text(v) for v in row]) for n, row in enumerate(ws.iter_rows(values_only=True), start=1)
        ]
    finally:
        wb.close()
    return parse_item_records(records)
