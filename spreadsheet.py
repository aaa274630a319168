"""
spreadsheet.py
--------------
Reads uploaded spreadsheets into header -> value rows and writes export
workbooks (invoices, accounting) as in-memory .xlsx documents.
"""

import csv
import io
import logging
import os
from datetime import date, datetime
from typing import Dict, List, Mapping, Sequence

from openpyxl import Workbook, load_workbook

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ImportFileError(Exception):
    """The uploaded file cannot be read as tabular data."""


def _is_blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _rows_from_matrix(matrix) -> List[Dict]:
    iterator = iter(matrix)
    try:
        header_row = next(iterator)
    except StopIteration:
        return []

    headers = []
    for index, cell in enumerate(header_row):
        title = "" if cell is None else str(cell).strip()
        headers.append(title or f"__col_{index}")

    rows = []
    for values in iterator:
        row = {}
        for header, value in zip(headers, values):
            if _is_blank(value):
                continue
            row[header] = value.strip() if isinstance(value, str) else value
        if row:
            rows.append(row)
    return rows


def _read_xlsx(content: bytes) -> List[Dict]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ImportFileError(f"Fichier Excel illisible: {e}") from e
    try:
        sheet = workbook.worksheets[0]
        return _rows_from_matrix(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def _read_csv(content: bytes) -> List[Dict]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    # French locale exports use ';' because ',' is the decimal separator
    header_line = text.split("\n", 1)[0]
    delimiter = max((",", ";", "\t"), key=header_line.count)
    try:
        return _rows_from_matrix(csv.reader(io.StringIO(text), delimiter=delimiter))
    except csv.Error as e:
        raise ImportFileError(f"Fichier CSV illisible: {e}") from e


def read_rows(content: bytes, filename: str) -> List[Dict]:
    """
    Parses the first sheet of an uploaded file.

    Args:
        content (bytes): Raw file content.
        filename (str): Original file name, used to pick the format.

    Returns:
        list: One dict per non-empty row, keyed by the header row; empty cells are omitted.

    Raises:
        ImportFileError: Unsupported format, unreadable file, or no data rows.
    """
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in (".xlsx", ".xlsm"):
        rows = _read_xlsx(content)
    elif extension == ".csv":
        rows = _read_csv(content)
    else:
        raise ImportFileError(f"Format non supporté: '{extension or filename}'. Utilisez .xlsx ou .csv")

    if not rows:
        raise ImportFileError("Le fichier semble vide.")
    logger.info(f"Read {len(rows)} rows from {filename}")
    return rows


def write_workbook(sheets: Mapping[str, Sequence[Mapping]]) -> bytes:
    """Writes {sheet title: rows} to an .xlsx document; columns follow the first row's keys."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title=title[:31])
        if not rows:
            continue
        headers = list(rows[0].keys())
        sheet.append(headers)
        for row in rows:
            sheet.append([row.get(h) for h in headers])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def format_display_date(value) -> str:
    """dd/mm/YYYY for ISO strings or date objects, raw text otherwise."""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    text = str(value or "")
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").strftime("%d/%m/%Y")
    except ValueError:
        return text


def invoices_export_filename(year: int) -> str:
    return f"Factures_{year}.xlsx"


def accounting_export_filename(year: int) -> str:
    return f"Compta_Cabinet_{year}.xlsx"
