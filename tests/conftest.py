"""Shared fixtures for the engine and API tests.

Reference loan: 1,000,000 commercial loan, 4.5%, 30yr, equal payment.
Reference combination: 600,000 commercial @ 4.5% + 400,000 housing fund @ 3.2%, both 30yr.
"""

import os

# API 限流在导入时读取，测试中放宽
os.environ.setdefault("RATE_LIMIT_DEFAULT", "1000/minute")
os.environ.setdefault("RATE_LIMIT_EXPORT", "1000/minute")

import pytest

from mortgage_planner.models import LoanParameters, LoanPart


@pytest.fixture
def commercial_loan() -> LoanParameters:
    return LoanParameters(
        loan_type="commercial",
        method="equal_payment",
        amount=1_000_000,
        term_months=360,
        annual_rate=0.045,
    )


@pytest.fixture
def equal_principal_loan() -> LoanParameters:
    return LoanParameters(
        loan_type="commercial",
        method="equal_principal",
        amount=1_000_000,
        term_months=360,
        annual_rate=0.045,
    )


@pytest.fixture
def combination_loan() -> LoanParameters:
    return LoanParameters(
        loan_type="combination",
        method="equal_payment",
        commercial_part=LoanPart(amount=600_000, term_months=360, annual_rate=0.045),
        housing_fund_part=LoanPart(amount=400_000, term_months=360, annual_rate=0.032),
    )


def assert_principal_conserved(result, amount):
    """本金守恒：各期本金 + 提前还款 = 贷款本金。"""
    repaid = sum(row.principal + (row.prepayment_applied or 0.0) for row in result.schedule)
    assert repaid == pytest.approx(amount, abs=0.01)


def assert_monotonic_payoff(result):
    balances = [row.remaining_principal for row in result.schedule]
    for before, after in zip(balances, balances[1:]):
        assert after <= before + 1e-9
    assert balances[-1] <= 0.01
    assert len(result.schedule) == result.actual_term
