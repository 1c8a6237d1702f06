from __future__ import annotations

import logging
import os

from mortgage_planner.calculator import calculate
from mortgage_planner.models import LoanParameters, LoanPart, PrepaymentEvent


logger = logging.getLogger("mortgage_planner")


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    single = LoanParameters(
        loan_type="commercial",
        method="equal_payment",
        amount=1_000_000,
        term_months=360,
        annual_rate=0.045,
    )
    combination = LoanParameters(
        loan_type="combination",
        method="equal_payment",
        commercial_part=LoanPart(600_000, 360, 0.045),
        housing_fund_part=LoanPart(400_000, 360, 0.032),
    )

    cases = [
        ("商贷 缩短年限", single, [PrepaymentEvent("p1", 12, 200_000, "reduce_term")]),
        ("商贷 减少月供", single, [PrepaymentEvent("p1", 12, 200_000, "reduce_payment")]),
        ("组合贷 商贷部分缩短年限", combination, [PrepaymentEvent("p1", 24, 100_000, "reduce_term", target="commercial")]),
    ]
    for label, params, events in cases:
        outcome = calculate(params, events)
        baseline = outcome.baseline_headline
        optimized = outcome.optimized_headline
        logger.info(
            "%s: 月供 %.2f, 期数 %d -> %d, 节省利息 %.2f",
            label,
            baseline.monthly_payment,
            baseline.actual_term,
            optimized.actual_term,
            outcome.savings.interest_saved,
        )


if __name__ == "__main__":
    main()
