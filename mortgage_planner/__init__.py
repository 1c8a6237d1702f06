"""房贷提前还款规划 Python 包。

常用导入：
    from mortgage_planner import LoanParameters, PrepaymentEvent, calculate

调试运行：
    python -m mortgage_planner

该调试入口会跑一组示例 calculate（商贷缩短年限 / 减少月供、组合贷），并打印节省汇总。
"""

from .calculator import calculate, generate_baseline, generate_optimized, simulate_prepayments
from .models import (
    CalculationError,
    CalculationOutcome,
    CombinedResult,
    IncompleteParametersError,
    InstrumentResult,
    InsufficientPaymentError,
    LoanParameters,
    LoanPart,
    PaymentPeriod,
    PrepaymentEvent,
    PrepaymentTargetError,
    Savings,
)

__all__ = [
    "CalculationError",
    "CalculationOutcome",
    "CombinedResult",
    "IncompleteParametersError",
    "InstrumentResult",
    "InsufficientPaymentError",
    "LoanParameters",
    "LoanPart",
    "PaymentPeriod",
    "PrepaymentEvent",
    "PrepaymentTargetError",
    "Savings",
    "calculate",
    "generate_baseline",
    "generate_optimized",
    "simulate_prepayments",
]
