from __future__ import annotations

import unittest
from io import BytesIO

from openpyxl import load_workbook

from orgchart.models import OrgNode
from orgchart.services.org_exports import EXPORT_HEADERS, build_org_chart_rows, build_org_chart_xlsx_bytes
from orgchart.services.org_tree import build_tree


def _forest():  # type: ignore[no-untyped-def]
    return build_tree(
        [
            OrgNode(id="b", name="Alan Turing", position="Lead", parent_id="ceo", prev_id="a", next_id=None),
            OrgNode(id="ceo", name="Ada Lovelace", position="CEO", parent_id=None, prev_id=None, next_id=None),
            OrgNode(id="a", name="Grace Hopper", position="CTO", parent_id="ceo", prev_id=None, next_id="b"),
        ]
    )


class OrgChartExportTests(unittest.TestCase):
    def test_rows_follow_rendered_order(self) -> None:
        rows = build_org_chart_rows(_forest())

        self.assertEqual(
            rows,
            [
                [0, "Ada Lovelace", "CEO", "", 1, "ceo"],
                [1, "Grace Hopper", "CTO", "Ada Lovelace", 1, "a"],
                [1, "Alan Turing", "Lead", "Ada Lovelace", 2, "b"],
            ],
        )

    def test_workbook_contains_header_and_rows(self) -> None:
        content = build_org_chart_xlsx_bytes(_forest(), title="Acme Org Chart")

        ws = load_workbook(BytesIO(content)).active
        self.assertEqual(ws.title, "Org Chart")
        self.assertEqual(ws.cell(row=1, column=1).value, "Acme Org Chart")
        self.assertEqual(ws.cell(row=2, column=1).value, "3 nodes")
        self.assertEqual([ws.cell(row=4, column=col).value for col in range(1, 7)], EXPORT_HEADERS)
        self.assertEqual(ws.cell(row=6, column=2).value, "Grace Hopper")
        self.assertEqual(ws.cell(row=6, column=2).alignment.indent, 1)
        self.assertEqual(ws.freeze_panes, "A5")


if __name__ == "__main__":
    unittest.main()
