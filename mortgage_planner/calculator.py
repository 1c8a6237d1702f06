from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Union
import logging
import math

from mortgage_planner.models import (
    LOAN_COMBINATION,
    METHOD_ANNUITY,
    METHOD_EQUAL_PRINCIPAL,
    MODE_COMBINATION,
    MODE_SINGLE,
    STRATEGY_REDUCE_PAYMENT,
    TARGET_COMMERCIAL,
    TARGET_HOUSING_FUND,
    TARGETS,
    CalculationOutcome,
    CombinedResult,
    IncompleteParametersError,
    InstrumentComparison,
    InstrumentResult,
    InsufficientPaymentError,
    LoanParameters,
    LoanPart,
    PaymentPeriod,
    PrepaymentEvent,
    PrepaymentTargetError,
    Savings,
    normalize_loan_type,
    normalize_method,
    normalize_strategy,
    normalize_target,
)


logger = logging.getLogger(__name__)

# 余额低于该值视为已还清（单位：元）
EPSILON = 0.01
# 逐期模拟的硬上限，保证任何输入下循环都会结束
MAX_PERIODS = 600

LoanResult = Union[InstrumentResult, CombinedResult]


@dataclass(frozen=True)
class PrincipalInstallment:
    """等额本金单期拆分：月供 = 固定本金 + 当期利息。"""

    payment: float
    principal: float
    interest: float


# --- 公式 ---


def monthly_rate(annual_rate: float) -> float:
    # 年利率小数 -> 月利率小数。例如 0.036 => 0.003
    return annual_rate / 12.0


def annuity_payment(principal: float, rate: float, months: int) -> float:
    """等额本息月供：P·r·(1+r)^n / ((1+r)^n − 1)，零利率时退化为 P / n。"""
    if months <= 0:
        return 0.0
    if rate == 0:
        return principal / months
    factor = math.pow(1 + rate, months)
    return principal * rate * factor / (factor - 1)


def equal_principal_payment(
    original_principal: float,
    remaining_principal: float,
    rate: float,
    months: int,
) -> PrincipalInstallment:
    # 等额本金：本金部分固定为 原本金/期数，利息按当前剩余本金计算
    principal_part = original_principal / months
    interest = remaining_principal * rate
    return PrincipalInstallment(principal_part + interest, principal_part, interest)


def solve_remaining_term(remaining_principal: float, payment: float, rate: float) -> float:
    """月供不变时，倒推还清剩余本金所需的期数（可能带小数）。

    n = ln(A / (A − P·r)) / ln(1 + r)

    月供不超过当期利息时余额永远还不完，抛出 InsufficientPaymentError。
    """
    if payment <= 0:
        raise InsufficientPaymentError("payment must be positive to amortize the remaining principal")
    if rate == 0:
        return remaining_principal / payment
    interest_floor = remaining_principal * rate
    if payment <= interest_floor:
        raise InsufficientPaymentError(
            f"payment {payment:.2f} cannot amortize remaining principal {remaining_principal:.2f}"
        )
    return math.log(payment / (payment - interest_floor)) / math.log(1 + rate)


# --- 原始还款计划 ---


def build_schedule(principal: float, rate: float, months: int, method: str) -> List[PaymentPeriod]:
    # 生成无提前还款的完整还款计划：支持等额本息 / 等额本金。
    rows: List[PaymentPeriod] = []
    balance = principal
    if months <= 0 or principal <= 0:
        return rows

    # 等额本金：每月固定归还本金；利息按剩余本金计算，因此月供逐月递减
    if method == METHOD_EQUAL_PRINCIPAL:
        for i in range(1, months + 1):
            step = equal_principal_payment(principal, balance, rate, months)
            balance -= step.principal
            if i == months:
                balance = 0.0
            rows.append(PaymentPeriod(i, step.payment, step.principal, step.interest, max(balance, 0.0)))
        return rows

    # 等额本息：月供固定；本金占比逐月上升、利息占比逐月下降
    payment = annuity_payment(principal, rate, months)
    for i in range(1, months + 1):
        interest = balance * rate
        principal_payment = payment - interest
        balance -= principal_payment
        # 最后一期吸收浮点误差
        if i == months:
            balance = 0.0
        rows.append(PaymentPeriod(i, payment, principal_payment, interest, max(balance, 0.0)))
    return rows


def _summarize(rows: Sequence[PaymentPeriod], monthly_payment: float) -> InstrumentResult:
    total_payment = sum(row.payment + (row.prepayment_applied or 0.0) for row in rows)
    total_interest = sum(row.interest for row in rows)
    return InstrumentResult(
        monthly_payment=monthly_payment,
        total_payment=total_payment,
        total_interest=total_interest,
        actual_term=len(rows),
        schedule=tuple(rows),
    )


def generate_instrument_schedule(part: LoanPart, method: str) -> InstrumentResult:
    method = normalize_method(method)
    rows = build_schedule(part.amount, monthly_rate(part.annual_rate), part.term_months, method)
    # 等额本金的月供逐期递减，这里取首期月供
    return _summarize(rows, rows[0].payment if rows else 0.0)


# --- 提前还款模拟 ---


def simulate_prepayments(
    part: LoanPart,
    method: str,
    events: Iterable[PrepaymentEvent],
) -> InstrumentResult:
    """逐期模拟还款并在指定期执行提前还款。

    每期先按当前生效的月供正常还款，再处理该期的提前还款：
    - reduce_payment：期限不变，按剩余合同期数重新摊还，后续月供下降；
    - reduce_term：月供不变（仅等额本息），余额更快归零，期数自然缩短。

    等额本金没有缩短年限的重算公式，保持固定本金继续还款，同样会提前结清。
    events 需已按目标贷款筛选；内部按 month 升序处理，同一期的多笔依次执行。
    """
    method = normalize_method(method)
    pending = sorted(events, key=lambda e: e.month)
    if not pending:
        return generate_instrument_schedule(part, method)

    rate = monthly_rate(part.annual_rate)
    term = part.term_months
    remaining = float(part.amount)

    # 等额本息当前生效的月供；只有 reduce_payment 会改变它
    current_payment = annuity_payment(remaining, rate, term)
    # 等额本金：固定本金 = principal_base / principal_term
    principal_base, principal_term = remaining, term

    rows: List[PaymentPeriod] = []
    index = 0
    period = 1

    while remaining > EPSILON and period <= MAX_PERIODS:
        interest = remaining * rate
        if method == METHOD_EQUAL_PRINCIPAL:
            step = equal_principal_payment(principal_base, remaining, rate, principal_term)
            principal = min(step.principal, remaining)
        else:
            if current_payment <= interest:
                raise InsufficientPaymentError(
                    f"payment {current_payment:.2f} does not cover interest {interest:.2f} in period {period}"
                )
            principal = min(current_payment - interest, remaining)
        payment = principal + interest
        remaining -= principal

        applied = 0.0
        is_prepayment = False
        while index < len(pending) and pending[index].month <= period:
            event = pending[index]
            index += 1
            if event.month < period:
                logger.debug("skipping prepayment %s scheduled before period 1", event.id)
                continue

            amount = max(min(event.amount, remaining), 0.0)
            if amount <= EPSILON:
                # 余额已在本期还清或金额非正，不算作提前还款
                logger.debug("period %d: prepayment %s has nothing to apply", period, event.id)
                continue
            remaining -= amount
            applied += amount
            is_prepayment = True
            logger.debug("period %d: prepayment %s applied %.2f, remaining %.2f", period, event.id, amount, remaining)
            if remaining <= EPSILON:
                break

            remaining_term = term - period
            if normalize_strategy(event.strategy) == STRATEGY_REDUCE_PAYMENT:
                if remaining_term > 0:
                    if method == METHOD_ANNUITY:
                        current_payment = annuity_payment(remaining, rate, remaining_term)
                    else:
                        principal_base, principal_term = remaining, remaining_term
                    logger.debug("period %d: re-amortized over %d periods", period, remaining_term)
            elif method == METHOD_ANNUITY:
                periods_left = solve_remaining_term(remaining, current_payment, rate)
                logger.debug("period %d: %d periods left at payment %.2f", period, math.ceil(periods_left), current_payment)

        rows.append(
            PaymentPeriod(
                period,
                payment,
                principal,
                interest,
                max(remaining, 0.0),
                is_prepayment_period=is_prepayment,
                prepayment_applied=applied if is_prepayment else None,
            )
        )
        period += 1

    if remaining > EPSILON:
        # 触达上限仍未还清：最后一期一次性结清
        logger.warning("hit %d-period cap with %.2f outstanding; settling as a final payment", MAX_PERIODS, remaining)
        rows.append(PaymentPeriod(period, remaining, remaining, 0.0, 0.0))

    if method == METHOD_ANNUITY:
        monthly_payment = annuity_payment(float(part.amount), rate, term)
    else:
        monthly_payment = rows[0].payment
    return _summarize(rows, monthly_payment)


# --- 组合贷合并 ---


def merge_schedules(first: Sequence[PaymentPeriod], second: Sequence[PaymentPeriod]) -> List[PaymentPeriod]:
    # 逐期相加；较短的一方在结清后按 0 计
    merged: List[PaymentPeriod] = []
    for idx in range(max(len(first), len(second))):
        a = first[idx] if idx < len(first) else PaymentPeriod(idx + 1, 0.0, 0.0, 0.0, 0.0)
        b = second[idx] if idx < len(second) else PaymentPeriod(idx + 1, 0.0, 0.0, 0.0, 0.0)
        if a.prepayment_applied is None and b.prepayment_applied is None:
            applied = None
        else:
            applied = (a.prepayment_applied or 0.0) + (b.prepayment_applied or 0.0)
        merged.append(
            PaymentPeriod(
                idx + 1,
                a.payment + b.payment,
                a.principal + b.principal,
                a.interest + b.interest,
                a.remaining_principal + b.remaining_principal,
                is_prepayment_period=a.is_prepayment_period or b.is_prepayment_period,
                prepayment_applied=applied,
            )
        )
    return merged


def combine_results(commercial: InstrumentResult, housing_fund: InstrumentResult) -> CombinedResult:
    combined = InstrumentResult(
        monthly_payment=commercial.monthly_payment + housing_fund.monthly_payment,
        total_payment=commercial.total_payment + housing_fund.total_payment,
        total_interest=commercial.total_interest + housing_fund.total_interest,
        actual_term=max(commercial.actual_term, housing_fund.actual_term),
        schedule=tuple(merge_schedules(commercial.schedule, housing_fund.schedule)),
    )
    return CombinedResult(commercial=commercial, housing_fund=housing_fund, combined=combined)


# --- 结果与节省 ---


def _part_complete(part: Optional[LoanPart]) -> bool:
    if part is None:
        return False
    return _fields_complete(part.amount, part.term_months, part.annual_rate)


def _fields_complete(amount: Optional[float], term_months: Optional[int], annual_rate: Optional[float]) -> bool:
    if amount is None or term_months is None or annual_rate is None:
        return False
    return amount > 0 and term_months > 0 and annual_rate >= 0


def _loan_parts(params: LoanParameters) -> Dict[str, LoanPart]:
    # 按贷款类型取出参与计算的贷款；参数缺失时报错
    if normalize_loan_type(params.loan_type) == LOAN_COMBINATION:
        if not (_part_complete(params.commercial_part) and _part_complete(params.housing_fund_part)):
            raise IncompleteParametersError("incomplete combination-loan parameters")
        return {
            TARGET_COMMERCIAL: params.commercial_part,
            TARGET_HOUSING_FUND: params.housing_fund_part,
        }
    if not _fields_complete(params.amount, params.term_months, params.annual_rate):
        raise IncompleteParametersError("incomplete single-loan parameters")
    return {params.loan_type: params.instrument()}


def validate_request(params: LoanParameters, events: Sequence[PrepaymentEvent]) -> None:
    """计算前的完整性校验：贷款参数齐全，提前还款的目标贷款与贷款类型一致。"""
    normalize_method(params.method)
    _loan_parts(params)

    if params.is_combination:
        for event in events:
            if event.target is None or event.target == "":
                raise PrepaymentTargetError("combination prepayment missing target instrument")
            if normalize_target(event.target) not in TARGETS:
                raise PrepaymentTargetError("invalid target-instrument value")
    else:
        for event in events:
            if event.target:
                raise PrepaymentTargetError("single-loan prepayment must not specify a target instrument")

    for event in events:
        normalize_strategy(event.strategy)


def generate_baseline(params: LoanParameters) -> LoanResult:
    parts = _loan_parts(params)
    if params.is_combination:
        return combine_results(
            generate_instrument_schedule(parts[TARGET_COMMERCIAL], params.method),
            generate_instrument_schedule(parts[TARGET_HOUSING_FUND], params.method),
        )
    (part,) = parts.values()
    return generate_instrument_schedule(part, params.method)


def generate_optimized(params: LoanParameters, events: Sequence[PrepaymentEvent]) -> LoanResult:
    parts = _loan_parts(params)
    if params.is_combination:
        # 分别处理商贷和公积金的提前还款
        by_target = {
            target: [e for e in events if normalize_target(e.target) == target]
            for target in TARGETS
        }
        return combine_results(
            simulate_prepayments(parts[TARGET_COMMERCIAL], params.method, by_target[TARGET_COMMERCIAL]),
            simulate_prepayments(parts[TARGET_HOUSING_FUND], params.method, by_target[TARGET_HOUSING_FUND]),
        )
    (part,) = parts.values()
    return simulate_prepayments(part, params.method, events)


def compute_savings(baseline: InstrumentResult, optimized: InstrumentResult) -> Savings:
    return Savings(
        interest_saved=baseline.total_interest - optimized.total_interest,
        payment_saved=baseline.total_payment - optimized.total_payment,
        term_reduction_months=baseline.actual_term - optimized.actual_term,
    )


def calculate(params: LoanParameters, events: Iterable[PrepaymentEvent] = ()) -> CalculationOutcome:
    # 主流程：
    # 1) 校验参数与提前还款目标
    # 2) 原方案（无提前还款）与优化方案分别计算
    # 3) 两者相减得到节省；组合贷额外给出分项节省
    events = tuple(events)
    validate_request(params, events)

    baseline = generate_baseline(params)
    optimized = generate_optimized(params, events)

    if isinstance(baseline, CombinedResult):
        breakdown = {
            target: InstrumentComparison(
                baseline=baseline.part(target),
                optimized=optimized.part(target),
                savings=compute_savings(baseline.part(target), optimized.part(target)),
            )
            for target in TARGETS
        }
        outcome = CalculationOutcome(
            mode=MODE_COMBINATION,
            baseline=baseline,
            optimized=optimized,
            savings=compute_savings(baseline.combined, optimized.combined),
            breakdown=breakdown,
        )
    else:
        outcome = CalculationOutcome(
            mode=MODE_SINGLE,
            baseline=baseline,
            optimized=optimized,
            savings=compute_savings(baseline, optimized),
        )

    logger.debug(
        "calculated %s loan with %d prepayments: interest saved %.2f, term reduced by %d",
        outcome.mode,
        len(events),
        outcome.savings.interest_saved,
        outcome.savings.term_reduction_months,
    )
    return outcome


# --- 分析辅助 ---


def aggregate_interest_by_year(schedule: Sequence[PaymentPeriod]) -> Dict[int, float]:
    # 按“贷款年度”汇总利息（第1年=1~12期，第2年=13~24期 ...）。
    totals: Dict[int, float] = {}
    for row in schedule:
        year = (row.period - 1) // 12 + 1
        totals[year] = totals.get(year, 0.0) + row.interest
    return totals


def remaining_principal_at(result: InstrumentResult, month: int) -> float:
    """第 month 期结束后的剩余本金；超出实际期数视为已还清。"""
    if month < 1:
        raise ValueError("month must be >= 1")
    if month > len(result.schedule):
        return 0.0
    return result.schedule[month - 1].remaining_principal
