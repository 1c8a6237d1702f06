from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple, Union


# 贷款类型：商业贷款 / 公积金贷款 / 组合贷款
LOAN_COMMERCIAL = "commercial"
LOAN_HOUSING_FUND = "housing_fund"
LOAN_COMBINATION = "combination"

# 还款方式常量：等额本息 / 等额本金
METHOD_ANNUITY = "equal_payment"
METHOD_EQUAL_PRINCIPAL = "equal_principal"

# 提前还款策略：缩短年限 / 减少月供
STRATEGY_REDUCE_TERM = "reduce_term"
STRATEGY_REDUCE_PAYMENT = "reduce_payment"

# 组合贷中的两笔贷款（提前还款目标）
TARGET_COMMERCIAL = LOAN_COMMERCIAL
TARGET_HOUSING_FUND = LOAN_HOUSING_FUND
TARGETS = (TARGET_COMMERCIAL, TARGET_HOUSING_FUND)

# 结果形态标签
MODE_SINGLE = "single"
MODE_COMBINATION = "combination"


class CalculationError(ValueError):
    """计算引擎能主动报告的错误。消息文本原样返回给调用方。"""


class IncompleteParametersError(CalculationError):
    """所选贷款类型需要的参数缺失或无效。"""


class PrepaymentTargetError(CalculationError):
    """提前还款计划的目标贷款与贷款类型不匹配。"""


class InsufficientPaymentError(CalculationError):
    """月供不足以覆盖利息，余额永远无法还清。"""


def _key(value: str) -> str:
    return value.strip().lower().replace("-", "_")


def normalize_method(method: str) -> str:
    # 统一并校验还款方式输入，支持一些别名。
    if not method:
        raise ValueError("repayment method is required")
    normalized = _key(method)
    if normalized in ("annuity", "equal_payment", "equal_installment"):
        return METHOD_ANNUITY
    if normalized in ("equal_principal", "principal"):
        return METHOD_EQUAL_PRINCIPAL
    raise ValueError(f"unsupported repayment method: {method}")


def normalize_loan_type(loan_type: str) -> str:
    if not loan_type:
        raise ValueError("loan type is required")
    normalized = _key(loan_type)
    if normalized in (LOAN_COMMERCIAL, "market"):
        return LOAN_COMMERCIAL
    if normalized in (LOAN_HOUSING_FUND, "fund", "subsidized"):
        return LOAN_HOUSING_FUND
    if normalized == LOAN_COMBINATION:
        return LOAN_COMBINATION
    raise ValueError(f"unsupported loan type: {loan_type}")


def normalize_strategy(strategy: str) -> str:
    if not strategy:
        raise ValueError("prepayment strategy is required")
    normalized = _key(strategy)
    if normalized in (STRATEGY_REDUCE_TERM, STRATEGY_REDUCE_PAYMENT):
        return normalized
    raise ValueError(f"unsupported prepayment strategy: {strategy}")


def normalize_target(target: Optional[str]) -> Optional[str]:
    """目标贷款别名归一；无法识别的值原样返回，交给请求校验报错。"""
    if target is None or target == "":
        return None
    normalized = _key(target)
    if normalized in ("market", LOAN_COMMERCIAL):
        return TARGET_COMMERCIAL
    if normalized in ("fund", "subsidized", LOAN_HOUSING_FUND):
        return TARGET_HOUSING_FUND
    return target


@dataclass(frozen=True)
class LoanPart:
    """单笔贷款的要素。

    字段说明：
        amount: 贷款本金（单位：元）。
        term_months: 贷款期数（月），例如 360。
        annual_rate: 年利率（小数），例如 0.045 表示 4.5%。
    """

    amount: float
    term_months: int
    annual_rate: float


@dataclass(frozen=True)
class LoanParameters:
    """贷款输入参数。

    字段说明：
        loan_type: commercial 商业贷款 / housing_fund 公积金贷款 / combination 组合贷款。
        method: 还款方式（equal_payment 等额本息；equal_principal 等额本金）。
        amount / term_months / annual_rate: 单一贷款时使用。
        commercial_part / housing_fund_part: 组合贷款时使用，两部分都必须提供。
    """

    loan_type: str
    method: str
    amount: Optional[float] = None
    term_months: Optional[int] = None
    annual_rate: Optional[float] = None
    commercial_part: Optional[LoanPart] = None
    housing_fund_part: Optional[LoanPart] = None

    @property
    def is_combination(self) -> bool:
        return normalize_loan_type(self.loan_type) == LOAN_COMBINATION

    def instrument(self) -> LoanPart:
        # 单一贷款的三个字段组装成 LoanPart，便于与组合贷共用计算流程
        return LoanPart(
            amount=float(self.amount),
            term_months=int(self.term_months),
            annual_rate=float(self.annual_rate),
        )


@dataclass(frozen=True)
class PrepaymentEvent:
    """一次提前还款计划。

    字段说明：
        id: 唯一标识。
        month: 在第几期（从 1 开始）还款后执行提前还款。
        amount: 提前还款金额（单位：元），超过剩余本金时自动截断。
        strategy: reduce_term 缩短年限 / reduce_payment 减少月供。
        target: 组合贷时必填（commercial / housing_fund）；单一贷款时必须为空。
    """

    id: str
    month: int
    amount: float
    strategy: str
    target: Optional[str] = None


@dataclass(frozen=True)
class PaymentPeriod:
    """单期（月）还款计划明细。

    字段说明：
        period: 期数序号（从 1 开始）。
        payment: 本期月供（不含提前还款，单位：元）。
        principal: 本期归还本金。
        interest: 本期支付利息。
        remaining_principal: 本期（含提前还款）结束后的剩余本金。
        is_prepayment_period: 本期是否发生了提前还款。
        prepayment_applied: 本期实际执行的提前还款金额（截断后）。
    """

    period: int
    payment: float
    principal: float
    interest: float
    remaining_principal: float
    is_prepayment_period: bool = False
    prepayment_applied: Optional[float] = None


@dataclass(frozen=True)
class InstrumentResult:
    """单笔贷款的计算结果。

    字段说明：
        monthly_payment: 首期计划月供（等额本金取第一期）。
        total_payment: 总还款额（含提前还款）。
        total_interest: 总利息。
        actual_term: 实际还款期数，提前还款后可能短于合同期数。
        schedule: 逐期明细。
    """

    monthly_payment: float
    total_payment: float
    total_interest: float
    actual_term: int
    schedule: Tuple[PaymentPeriod, ...]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CombinedResult:
    """组合贷款结果：商贷、公积金各自的结果，以及逐期相加后的合并结果。"""

    commercial: InstrumentResult
    housing_fund: InstrumentResult
    combined: InstrumentResult

    def part(self, target: str) -> InstrumentResult:
        if target == TARGET_COMMERCIAL:
            return self.commercial
        if target == TARGET_HOUSING_FUND:
            return self.housing_fund
        raise ValueError(f"unknown loan part: {target}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Savings:
    """优化方案相对原方案的节省：利息、总还款额、缩短期数。"""

    interest_saved: float
    payment_saved: float
    term_reduction_months: int


@dataclass(frozen=True)
class InstrumentComparison:
    baseline: InstrumentResult
    optimized: InstrumentResult
    savings: Savings


@dataclass(frozen=True)
class CalculationOutcome:
    """一次计算的完整输出。

    字段说明：
        mode: single 或 combination，由贷款类型决定，baseline/optimized 的形态与之对应。
        baseline: 无提前还款的原方案。
        optimized: 应用提前还款计划后的方案。
        savings: 合并口径的节省（单一贷款即该贷款本身）。
        breakdown: 组合贷时按 commercial / housing_fund 拆分的对比明细；单一贷款为 None。
    """

    mode: str
    baseline: Union[InstrumentResult, CombinedResult]
    optimized: Union[InstrumentResult, CombinedResult]
    savings: Savings
    breakdown: Optional[Dict[str, InstrumentComparison]] = None

    @property
    def is_combination(self) -> bool:
        return self.mode == MODE_COMBINATION

    def _headline(self, result: Union[InstrumentResult, CombinedResult]) -> InstrumentResult:
        # 取汇总口径：组合贷取 combined，单一贷款即本身
        return result.combined if self.is_combination else result

    @property
    def baseline_headline(self) -> InstrumentResult:
        return self._headline(self.baseline)

    @property
    def optimized_headline(self) -> InstrumentResult:
        return self._headline(self.optimized)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
