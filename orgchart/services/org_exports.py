from __future__ import annotations

from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from orgchart.services.org_layout import level_palette
from orgchart.services.org_tree import TreeNode, walk_levels

EXPORT_HEADERS = [
    "Level",
    "Name",
    "Position",
    "Manager",
    "Order",
    "Node ID",
]
COLUMN_WIDTHS = [8, 36, 30, 30, 8, 36]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _style_header_row(ws: Worksheet, row: int) -> None:
    for col_idx in range(1, len(EXPORT_HEADERS) + 1):
        cell = ws.cell(row=row, column=col_idx)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center")


def build_org_chart_rows(forest: list[TreeNode]) -> list[list[str | int]]:
    names = {node.id: node.name for node, _level in walk_levels(forest)}
    rows: list[list[str | int]] = []

    def visit(siblings: list[TreeNode], level: int) -> None:
        for order, node in enumerate(siblings, start=1):
            manager = names.get(node.parent_id, "") if node.parent_id else ""
            rows.append([level, node.name, node.position, manager, order, node.id])
            visit(node.children, level + 1)

    visit(forest, 0)
    return rows


def build_org_chart_xlsx_bytes(forest: list[TreeNode], *, title: str = "Org Chart") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Org Chart"

    ws.cell(row=1, column=1, value=title).font = TITLE_FONT
    rows = build_org_chart_rows(forest)
    ws.cell(row=2, column=1, value=f"{len(rows)} nodes").font = MUTED_FONT

    header_row = 4
    for col_idx, header in enumerate(EXPORT_HEADERS, start=1):
        ws.cell(row=header_row, column=col_idx, value=header)
    _style_header_row(ws, header_row)

    for offset, values in enumerate(rows, start=1):
        row_idx = header_row + offset
        level = int(values[0])
        fill_color = level_palette(level)[0].lstrip("#").upper()
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = THIN_BORDER
            if col_idx == 2:
                cell.alignment = Alignment(indent=level)
                cell.fill = PatternFill(fill_type="solid", fgColor=fill_color)

    for col_idx, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
