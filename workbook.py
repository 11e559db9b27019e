import re
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from rich.console import Console

from extract import ProductRecord


console = Console()

# (header, record field, width)
COLUMNS: List[Tuple[str, str, int]] = [
    ("SKU", "sku", 20),
    ("Selling Price", "price", 15),
    ("Comment", "comment", 50),
]
MAX_SHEET_TITLE = 31
_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")


def snapshot_filename(run_date: date) -> str:
    return f"afastores_products_{run_date.isoformat()}.xlsx"


def sheet_title(group_key: str) -> str:
    """Excel-safe sheet title. Keys sharing the first 31 characters collide."""
    return _INVALID_TITLE_CHARS.sub("-", group_key)[:MAX_SHEET_TITLE]


class ResultAggregator:
    """Append-only result set for the whole run, exported as one workbook.

    Every `persist()` regroups the full set and overwrites the snapshot file.
    """

    def __init__(self, output_dir: str = ".", run_date: Optional[date] = None) -> None:
        self.output_dir = Path(output_dir)
        self.filename = snapshot_filename(run_date or date.today())
        self.records: List[ProductRecord] = []

    @property
    def path(self) -> Path:
        return self.output_dir / self.filename

    def append(self, record: ProductRecord) -> None:
        self.records.append(record)

    def groups(self) -> Dict[str, List[ProductRecord]]:
        grouped: Dict[str, List[ProductRecord]] = {}
        for record in self.records:
            grouped.setdefault(record.group_key, []).append(record)
        return grouped

    def sheets(self) -> Dict[str, List[ProductRecord]]:
        """Groups keyed by sheet title; a later group replaces an earlier one on collision."""
        by_title: Dict[str, List[ProductRecord]] = {}
        for key, rows in self.groups().items():
            by_title[sheet_title(key)] = rows
        return by_title

    def persist(self) -> Path:
        wb = Workbook()
        sheets = self.sheets()
        if sheets:
            wb.remove(wb.active)
        header_font = Font(bold=True)
        for title, rows in sheets.items():
            ws = wb.create_sheet(title=title)
            for col_idx, (header, _, width) in enumerate(COLUMNS, 1):
                ws.cell(row=1, column=col_idx, value=header).font = header_font
                ws.column_dimensions[get_column_letter(col_idx)].width = width
            for row_idx, record in enumerate(rows, 2):
                for col_idx, (_, field, _) in enumerate(COLUMNS, 1):
                    ws.cell(row=row_idx, column=col_idx, value=getattr(record, field))

        self.output_dir.mkdir(parents=True, exist_ok=True)
        wb.save(self.path)
        console.log(f"Excel file updated: {self.filename}")
        return self.path
