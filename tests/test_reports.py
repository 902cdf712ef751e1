# tests/test_reports.py
from datetime import date

import pandas as pd
import pytest

from app.jobs.payloads import ReportFormat
from app.services.inventory import LineItem
from app.services.reports import ReportWriter


@pytest.fixture
def writer(session_factory, settings, clock) -> ReportWriter:
    return ReportWriter(session_factory, settings.report_directory, clock=clock)


async def test_inventory_report_csv(writer, seed):
    await seed.item("flour", name="Flour", minimum=5, unit="kg")
    await seed.item("salt", name="Salt", minimum=1, unit="kg")
    await seed.stock("1", "flour", 3)
    await seed.stock("1", "salt", 4)
    await seed.stock("2", "flour", 9)

    report = await writer.inventory_report("1", ReportFormat.CSV)

    assert report.rows == 2
    assert report.path.name == "inventory_1_20260302_120000.csv"
    frame = pd.read_csv(report.path)
    assert list(frame.columns) == ReportWriter.INVENTORY_COLUMNS
    assert frame["item_id"].tolist() == ["flour", "salt"]
    assert frame["low_stock"].tolist() == [True, False]
    assert frame.loc[0, "current_stock"] == pytest.approx(3.0)


async def test_inventory_report_excel_all_locations(writer, seed):
    await seed.item("flour", minimum=5)
    await seed.stock("1", "flour", 3)
    await seed.stock("2", "flour", 9)

    report = await writer.inventory_report(None, ReportFormat.EXCEL)

    assert report.path.suffix == ".xlsx"
    assert report.to_dict()["file_name"] == "inventory_all_20260302_120000.xlsx"
    frame = pd.read_excel(report.path, engine="openpyxl", dtype={"location_id": str})
    assert frame["location_id"].tolist() == ["1", "2"]


async def test_empty_inventory_report_keeps_header(writer):
    report = await writer.inventory_report("9", ReportFormat.CSV)

    assert report.rows == 0
    assert list(pd.read_csv(report.path).columns) == ReportWriter.INVENTORY_COLUMNS


async def test_movement_report_filters_by_date(writer, deduction, seed, clock):
    await seed.item("bun")
    await seed.stock("1", "bun", 10)
    await seed.recipe("burger", {"bun": 1})

    await deduction.deduct("ORD-1", "1", [LineItem("burger", 1)])
    clock.advance(days=1)
    await deduction.deduct("ORD-2", "1", [LineItem("burger", 2)])

    first_day = await writer.stock_movement_report("1", date(2026, 3, 2), date(2026, 3, 2), ReportFormat.CSV)
    both_days = await writer.stock_movement_report(None, date(2026, 3, 2), date(2026, 3, 3), ReportFormat.CSV)

    frame = pd.read_csv(first_day.path)
    assert frame["reference_id"].tolist() == ["ORD-1"]
    assert frame.loc[0, "movement_type"] == "sale"
    assert frame.loc[0, "quantity_delta"] == pytest.approx(-1.0)
    assert both_days.rows == 2
