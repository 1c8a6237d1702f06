import zipfile
from io import BytesIO

import pytest
from openpyxl import load_workbook

from mortgage_planner.calculator import calculate
from mortgage_planner.export import (
    PREPAY_FILL,
    SCHEDULE_HEADERS,
    combined_schedule_to_xlsx,
    outcome_to_zip,
    schedule_to_xlsx,
    yearly_interest_to_xlsx,
)
from mortgage_planner.models import PrepaymentEvent


def _load(data: bytes):
    return load_workbook(BytesIO(data)).active


def test_schedule_sheet_layout(commercial_loan):
    outcome = calculate(commercial_loan, [PrepaymentEvent("p1", 3, 50_000, "reduce_payment")])
    ws = _load(schedule_to_xlsx(outcome.optimized.schedule[:6]))

    assert [cell.value for cell in ws[1]] == SCHEDULE_HEADERS
    assert ws.max_row == 7
    assert ws.cell(row=2, column=1).value == 1
    assert ws.cell(row=4, column=6).value == pytest.approx(50_000)
    assert ws.cell(row=4, column=2).fill.fgColor.rgb.endswith(PREPAY_FILL.fgColor.rgb[-6:])
    assert ws.cell(row=3, column=6).value == 0


def test_combined_sheet_has_part_columns(combination_loan):
    outcome = calculate(combination_loan)
    ws = _load(combined_schedule_to_xlsx(outcome.baseline))

    headers = [cell.value for cell in ws[1]]
    assert len(headers) == 12
    assert headers[3] == "商贷月供"
    assert headers[7] == "公积金月供"
    assert ws.max_row == 361
    assert ws.cell(row=2, column=2).value == pytest.approx(round(outcome.baseline.combined.monthly_payment, 2))


def test_yearly_interest_sheet(commercial_loan):
    outcome = calculate(commercial_loan, [PrepaymentEvent("p1", 12, 200_000, "reduce_term")])
    ws = _load(yearly_interest_to_xlsx(outcome))

    assert ws.max_row == 31
    first_year_saved = ws.cell(row=2, column=4).value
    assert first_year_saved == pytest.approx(0, abs=0.01)
    assert ws.cell(row=3, column=4).value > 0


def test_outcome_zip_combination(combination_loan):
    events = [PrepaymentEvent("p1", 12, 100_000, "reduce_term", target="commercial")]
    data = outcome_to_zip(calculate(combination_loan, events))

    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert sorted(zf.namelist()) == sorted(["原方案还款明细.xlsx", "提前还款后还款明细.xlsx", "年度利息对比.xlsx"])
        optimized = load_workbook(BytesIO(zf.read("提前还款后还款明细.xlsx")))
    assert optimized.active.title == "Combined"
