"""
CRX: File Import
Spreadsheet (.xlsx via openpyxl) and CSV readers, plus the title-sheet import.
"""
import io, csv, logging
from pathlib import Path
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from fastapi import HTTPException

from crx.config import SHEET_EXTENSIONS, MAX_UPLOAD_BYTES
from crx.db import now_iso
from crx import titles

logger = logging.getLogger(__name__)


def _parse_xlsx(content: bytes) -> list:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows, headers = [], []
        for i, row in enumerate(ws.iter_rows(values_only=True)):
            if i == 0:
                headers = [str(h).strip() if h is not None else f"col_{j}" for j, h in enumerate(row)]
                continue
            if all(v is None for v in row):
                continue
            rows.append({headers[j]: v for j, v in enumerate(row) if j < len(headers)})
        return rows
    finally:
        wb.close()

def _parse_csv(content: bytes) -> list:
    text = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text))
    return [{(k or "").strip(): v for k, v in row.items()} for row in reader]

def read_sheet(filename: str, content: bytes) -> list:
    """Rows of the first sheet as dicts keyed by the header row."""
    ext = Path(filename or "").suffix.lower()
    if ext not in SHEET_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type '{ext}'. Allowed: {sorted(SHEET_EXTENSIONS)}")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(400, f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")
    try:
        return _parse_xlsx(content) if ext == ".xlsx" else _parse_csv(content)
    except (InvalidFileException, BadZipFile, KeyError, ValueError, csv.Error) as e:
        logger.warning("Failed to parse %s: %s", filename, e)
        raise HTTPException(400, f"Failed to process file: {e}")

def _cell(row: dict, *names) -> str:
    for name in names:
        val = row.get(name)
        if val is not None and str(val).strip():
            return str(val).strip()
    return ""

def normalize_title_rows(rows: list) -> list:
    out = []
    for row in rows:
        item = {"title": _cell(row, "title", "Title"),
                "description": _cell(row, "description", "Description")}
        if item["title"] or item["description"]:
            out.append(item)
    return out

def import_titles(db: dict, filename: str, content: bytes, content_type: str = None) -> dict:
    """Persist every parsed row as a file entry, then bulk-create titles from them."""
    rows = normalize_title_rows(read_sheet(filename, content))
    now = now_iso()
    entries = [{"title": r["title"], "description": r["description"], "fileName": filename,
                "fileType": content_type or Path(filename).suffix.lower(), "createdAt": now}
               for r in rows]
    db["file_entries"].extend(entries)
    created = titles.create_bulk(db, [{"name": r["title"], "description": r["description"]} for r in rows])
    logger.info("Imported %s: %d rows, %d titles", filename, len(rows), len(created))
    return {"data": entries, "titles": created, "processedRows": len(rows)}

def find_all_entries(db: dict) -> list:
    return sorted(db["file_entries"], key=lambda e: e.get("createdAt", ""), reverse=True)
