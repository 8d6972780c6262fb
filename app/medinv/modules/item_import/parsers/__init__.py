from __future__ import annotations

from app.medinv.modules.item_import.parsers.csv import ImportStructureError, ParsedImport, parse_item_csv
from app.medinv.modules.item_import.parsers.xlsx import parse_item_xlsx

SUPPORTED_FORMATS = ("csv", "xlsx")


def detect_format(filename: str | None) -> str:
    """Import format from the upload's extension; anything unknown is read as CSV."""
    name = (filename or "").strip().lower()
    if name.endswith((".xlsx", ".xlsm")):
        return "xlsx"
    if name.endswith(".xls"):
        raise ImportStructureError("Old .xls workbooks are not supported. Save the file as .xlsx or CSV.")
    return "csv"


def parse_item_file(file_bytes: bytes, fmt: str) -> ParsedImport:
    if fmt == "xlsx":
        return parse_item_xlsx(file_bytes)
    return parse_item_csv(file_bytes)
