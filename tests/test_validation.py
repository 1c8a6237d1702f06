import pytest

from mortgage_planner.calculator import calculate, generate_baseline, validate_request
from mortgage_planner.models import (
    CalculationError,
    IncompleteParametersError,
    LoanParameters,
    LoanPart,
    PrepaymentEvent,
    PrepaymentTargetError,
    normalize_loan_type,
    normalize_strategy,
    normalize_target,
)


def _event(target=None, strategy="reduce_term"):
    return PrepaymentEvent(id="p1", month=12, amount=10_000, strategy=strategy, target=target)


class TestParameterCompleteness:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": None},
            {"term_months": None},
            {"annual_rate": None},
            {"amount": 0},
            {"term_months": 0},
            {"annual_rate": -0.01},
        ],
    )
    def test_incomplete_single_loan(self, overrides):
        fields = {"amount": 1_000_000, "term_months": 360, "annual_rate": 0.045}
        fields.update(overrides)
        params = LoanParameters(loan_type="housing_fund", method="equal_payment", **fields)

        with pytest.raises(IncompleteParametersError) as exc:
            calculate(params)
        assert str(exc.value) == "incomplete single-loan parameters"

    def test_zero_rate_single_loan_is_complete(self):
        params = LoanParameters(loan_type="commercial", method="equal_payment", amount=120_000, term_months=120, annual_rate=0)
        assert calculate(params).baseline.monthly_payment == pytest.approx(1000)

    def test_combination_missing_part(self):
        params = LoanParameters(
            loan_type="combination",
            method="equal_payment",
            commercial_part=LoanPart(600_000, 360, 0.045),
        )
        with pytest.raises(IncompleteParametersError) as exc:
            calculate(params)
        assert str(exc.value) == "incomplete combination-loan parameters"

    def test_combination_invalid_part(self):
        params = LoanParameters(
            loan_type="combination",
            method="equal_payment",
            commercial_part=LoanPart(600_000, 360, 0.045),
            housing_fund_part=LoanPart(0, 360, 0.032),
        )
        with pytest.raises(IncompleteParametersError, match="incomplete combination-loan parameters"):
            generate_baseline(params)

    def test_combination_ignores_single_fields(self, combination_loan):
        # 组合贷只看两部分参数，单一贷款字段为空不影响
        assert combination_loan.amount is None
        validate_request(combination_loan, [])

    def test_unknown_loan_type(self):
        params = LoanParameters(loan_type="car", method="equal_payment", amount=1, term_months=1, annual_rate=0.01)
        with pytest.raises(ValueError, match="unsupported loan type"):
            calculate(params)


class TestPrepaymentTargeting:
    def test_combination_requires_target(self, combination_loan):
        with pytest.raises(PrepaymentTargetError) as exc:
            calculate(combination_loan, [_event(target=None)])
        assert str(exc.value) == "combination prepayment missing target instrument"

    def test_combination_invalid_target(self, combination_loan):
        with pytest.raises(PrepaymentTargetError) as exc:
            calculate(combination_loan, [_event(target="credit_card")])
        assert str(exc.value) == "invalid target-instrument value"

    @pytest.mark.parametrize("target", ["commercial", "housing_fund", "housing-fund", "market", "subsidized"])
    def test_combination_target_aliases(self, combination_loan, target):
        validate_request(combination_loan, [_event(target=target)])

    def test_single_loan_rejects_target(self, commercial_loan):
        with pytest.raises(PrepaymentTargetError) as exc:
            calculate(commercial_loan, [_event(target="commercial")])
        assert str(exc.value) == "single-loan prepayment must not specify a target instrument"

    def test_parameter_errors_reported_before_targeting(self):
        params = LoanParameters(loan_type="combination", method="equal_payment")
        with pytest.raises(IncompleteParametersError):
            calculate(params, [_event(target=None)])

    def test_unknown_strategy(self, commercial_loan):
        with pytest.raises(ValueError, match="unsupported prepayment strategy"):
            calculate(commercial_loan, [_event(strategy="skip_payment")])

    def test_errors_are_value_errors(self):
        assert issubclass(CalculationError, ValueError)
        assert issubclass(PrepaymentTargetError, CalculationError)


class TestNormalizers:
    def test_loan_type_aliases(self):
        assert normalize_loan_type("Housing-Fund") == "housing_fund"
        assert normalize_loan_type("market") == "commercial"
        assert normalize_loan_type("combination") == "combination"

    def test_strategy_aliases(self):
        assert normalize_strategy("reduce-term") == "reduce_term"
        assert normalize_strategy("REDUCE_PAYMENT") == "reduce_payment"

    def test_target_passthrough(self):
        assert normalize_target(None) is None
        assert normalize_target("fund") == "housing_fund"
        assert normalize_target("bank") == "bank"
