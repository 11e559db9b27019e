from datetime import date

from openpyxl import load_workbook

from extract import ProductRecord
from workbook import ResultAggregator, sheet_title


def _rows(ws):
    return [tuple(c.value or "" for c in row) for row in ws.iter_rows(min_row=2, max_col=3)]


def test_filename_encodes_run_date(tmp_path):
    agg = ResultAggregator(str(tmp_path), run_date=date(2024, 5, 1))
    assert agg.filename == "afastores_products_2024-05-01.xlsx"
    assert agg.path == tmp_path / "afastores_products_2024-05-01.xlsx"


def test_groups_recomputed_from_non_contiguous_appends(aggregator):
    a1 = ProductRecord(brand="M", category="Office", sku="A1")
    b1 = ProductRecord(brand="M", category="Bedroom", sku="B1")
    a2 = ProductRecord(brand="M", category="Office", sku="A2")
    for r in (a1, b1, a2):
        aggregator.append(r)
    groups = aggregator.groups()
    assert list(groups) == ["M - Office", "M - Bedroom"]
    assert groups["M - Office"] == [a1, a2]


def test_persist_writes_one_sheet_per_group(aggregator):
    aggregator.append(ProductRecord(brand="Martin Furniture", category="Office", sku="MF-1", price="$10", comment="Sale"))
    aggregator.append(ProductRecord.placeholder("Martin Furniture", "Bedroom"))
    path = aggregator.persist()

    wb = load_workbook(path)
    assert wb.sheetnames == ["Martin Furniture - Office", "Martin Furniture - Bedroom"]
    ws = wb["Martin Furniture - Office"]
    assert [c.value for c in ws[1]] == ["SKU", "Selling Price", "Comment"]
    assert _rows(ws) == [("MF-1", "$10", "Sale")]
    assert ws.column_dimensions["A"].width == 20
    assert ws.column_dimensions["B"].width == 15
    assert ws.column_dimensions["C"].width == 50
    assert _rows(wb["Martin Furniture - Bedroom"]) == [("", "", "")]


def test_persist_overwrites_previous_snapshot(aggregator):
    aggregator.append(ProductRecord(brand="M", category="Office", sku="A1"))
    aggregator.persist()
    aggregator.append(ProductRecord(brand="M", category="Office", sku="A2"))
    path = aggregator.persist()
    assert _rows(load_workbook(path)["M - Office"]) == [("A1", "", ""), ("A2", "", "")]


def test_truncated_sheet_titles_collide_and_last_group_wins(aggregator):
    # Known collision: both keys share the first 31 characters.
    aggregator.append(ProductRecord(brand="Legacy Classic Furniture", category="Bedroom Sets", sku="FIRST"))
    aggregator.append(ProductRecord(brand="Legacy Classic Furniture", category="Bedroom Benches", sku="SECOND"))
    wb = load_workbook(aggregator.persist())
    assert wb.sheetnames == ["Legacy Classic Furniture - Bedr"]
    assert _rows(wb["Legacy Classic Furniture - Bedr"]) == [("SECOND", "", "")]


def test_sheet_title_replaces_forbidden_characters():
    assert sheet_title("Martin Furniture - Home/Office") == "Martin Furniture - Home-Office"
    assert len(sheet_title("x" * 40)) == 31
