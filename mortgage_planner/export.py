from __future__ import annotations

from io import BytesIO
from typing import List, Sequence
import zipfile

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from mortgage_planner.calculator import aggregate_interest_by_year
from mortgage_planner.models import CalculationOutcome, CombinedResult, PaymentPeriod


HEADER_FONT = Font(bold=True, name="Arial", size=11, color="FFFFFF")
BODY_FONT = Font(name="Arial", size=10)
HEADER_FILL = PatternFill("solid", fgColor="0F172A")
HEADER_FILL_COMMERCIAL = PatternFill("solid", fgColor="1D4ED8")
HEADER_FILL_FUND = PatternFill("solid", fgColor="047857")
BODY_FILL_COMMERCIAL = PatternFill("solid", fgColor="EFF6FF")
BODY_FILL_FUND = PatternFill("solid", fgColor="ECFDF3")
ALT_FILL = PatternFill("solid", fgColor="F8FAFC")
PREPAY_FILL = PatternFill("solid", fgColor="FEF3C7")
BORDER = Border(bottom=Side(style="thin", color="E2E8F0"))
ALIGN_RIGHT = Alignment(horizontal="right")
ALIGN_CENTER = Alignment(horizontal="center")

SCHEDULE_HEADERS = ["期数", "月供", "本金", "利息", "余额", "提前还款", "利息占比"]


def _interest_ratio(row: PaymentPeriod) -> float:
    return (row.interest / row.payment) if row.payment else 0.0


def _style_header(ws, fills=None) -> None:
    for idx, cell in enumerate(ws[1], start=1):
        cell.font = HEADER_FONT
        cell.fill = (fills or {}).get(idx, HEADER_FILL)
        cell.alignment = ALIGN_CENTER


def _to_bytes(wb: Workbook) -> bytes:
    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def schedule_to_xlsx(schedule: Sequence[PaymentPeriod]) -> bytes:
    """将还款计划导出为 Excel（xlsx），提前还款期整行高亮。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"
    ws.append(SCHEDULE_HEADERS)
    _style_header(ws)

    for idx, row in enumerate(schedule, start=2):
        ws.append([
            row.period,
            round(row.payment, 2),
            round(row.principal, 2),
            round(row.interest, 2),
            round(row.remaining_principal, 2),
            round(row.prepayment_applied or 0.0, 2),
            f"{_interest_ratio(row) * 100:.2f}%",
        ])
        for col_idx in range(1, len(SCHEDULE_HEADERS) + 1):
            cell = ws.cell(row=idx, column=col_idx)
            cell.font = BODY_FONT
            cell.alignment = ALIGN_RIGHT if col_idx > 1 else ALIGN_CENTER
            if row.is_prepayment_period:
                cell.fill = PREPAY_FILL
            elif idx % 2 == 0:
                cell.fill = ALT_FILL
            cell.border = BORDER

    widths = [8, 14, 14, 14, 16, 14, 12]
    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = w

    return _to_bytes(wb)


def combined_schedule_to_xlsx(result: CombinedResult) -> bytes:
    """组合贷专用：合并月供 + 商贷/公积金分列明细。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Combined"

    headers = ["期数", "月供总额", "提前还款"]
    headers += ["商贷月供", "商贷本金", "商贷利息", "商贷余额"]
    headers += ["公积金月供", "公积金本金", "公积金利息", "公积金余额"]
    headers.append("利息总占比")
    ws.append(headers)

    commercial_cols = [idx for idx, h in enumerate(headers, start=1) if h.startswith("商贷")]
    fund_cols = [idx for idx, h in enumerate(headers, start=1) if h.startswith("公积金")]
    fills = {idx: HEADER_FILL_COMMERCIAL for idx in commercial_cols}
    fills.update({idx: HEADER_FILL_FUND for idx in fund_cols})
    _style_header(ws, fills)

    commercial = result.commercial.schedule
    fund = result.housing_fund.schedule
    for idx, total in enumerate(result.combined.schedule):
        c = commercial[idx] if idx < len(commercial) else PaymentPeriod(idx + 1, 0.0, 0.0, 0.0, 0.0)
        f = fund[idx] if idx < len(fund) else PaymentPeriod(idx + 1, 0.0, 0.0, 0.0, 0.0)
        row_values = [
            total.period,
            round(total.payment, 2),
            round(total.prepayment_applied or 0.0, 2),
            round(c.payment, 2),
            round(c.principal, 2),
            round(c.interest, 2),
            round(c.remaining_principal, 2),
            round(f.payment, 2),
            round(f.principal, 2),
            round(f.interest, 2),
            round(f.remaining_principal, 2),
            f"{_interest_ratio(total) * 100:.2f}%",
        ]
        ws.append(row_values)

        for col_idx in range(1, len(row_values) + 1):
            cell = ws.cell(row=idx + 2, column=col_idx)
            cell.font = BODY_FONT
            cell.alignment = ALIGN_RIGHT if col_idx > 1 else ALIGN_CENTER
            if col_idx in commercial_cols:
                cell.fill = BODY_FILL_COMMERCIAL
            elif col_idx in fund_cols:
                cell.fill = BODY_FILL_FUND
            elif total.is_prepayment_period:
                cell.fill = PREPAY_FILL
            elif (idx + 2) % 2 == 0:
                cell.fill = ALT_FILL
            cell.border = BORDER

    for i in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(i)].width = 14

    return _to_bytes(wb)


def yearly_interest_to_xlsx(outcome: CalculationOutcome) -> bytes:
    # 原方案与优化方案按贷款年度的利息对比
    baseline = aggregate_interest_by_year(outcome.baseline_headline.schedule)
    optimized = aggregate_interest_by_year(outcome.optimized_headline.schedule)

    wb = Workbook()
    ws = wb.active
    ws.title = "Interest by year"
    ws.append(["年度", "原方案利息", "提前还款后利息", "节省利息"])
    _style_header(ws)

    for year in sorted(baseline.keys() | optimized.keys()):
        before = baseline.get(year, 0.0)
        after = optimized.get(year, 0.0)
        ws.append([year, round(before, 2), round(after, 2), round(before - after, 2)])

    for i in range(1, 5):
        ws.column_dimensions[get_column_letter(i)].width = 16

    return _to_bytes(wb)


def _result_workbook(outcome: CalculationOutcome, result) -> bytes:
    if outcome.is_combination:
        return combined_schedule_to_xlsx(result)
    return schedule_to_xlsx(result.schedule)


def outcome_to_zip(outcome: CalculationOutcome) -> bytes:
    """打包导出：原方案、提前还款后方案、年度利息对比各一份 Excel。"""
    files: List[tuple] = [
        ("原方案还款明细.xlsx", _result_workbook(outcome, outcome.baseline)),
        ("提前还款后还款明细.xlsx", _result_workbook(outcome, outcome.optimized)),
        ("年度利息对比.xlsx", yearly_interest_to_xlsx(outcome)),
    ]

    zip_buf = BytesIO()
    with zipfile.ZipFile(zip_buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files:
            zf.writestr(name, data)
    zip_buf.seek(0)
    return zip_buf.getvalue()
