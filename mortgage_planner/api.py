from __future__ import annotations

import logging
import os
import uuid
from io import BytesIO
from typing import List, Optional, Tuple
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from mortgage_planner.calculator import calculate
from mortgage_planner.export import outcome_to_zip
from mortgage_planner.models import (
    CalculationOutcome,
    LoanParameters,
    LoanPart,
    PrepaymentEvent,
    normalize_loan_type,
    normalize_method,
    normalize_strategy,
)


logger = logging.getLogger(__name__)

API_KEY = os.getenv("API_KEY")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")
MAX_TERM_MONTHS = int(os.getenv("MAX_TERM_MONTHS", "600"))
MAX_PRINCIPAL = float(os.getenv("MAX_PRINCIPAL", "100000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "0.5"))
MAX_PREPAYMENTS = int(os.getenv("MAX_PREPAYMENTS", "120"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return get_remote_address(request)


limiter = Limiter(key_func=_client_ip, default_limits=[DEFAULT_RATE_LIMIT])

app = FastAPI(
    title="房贷提前还款规划",
    description="商贷 / 公积金 / 组合贷的还款计划与提前还款节省测算。",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


def require_api_key(request: Request):
    if not API_KEY:
        return
    provided = request.headers.get("x-api-key")
    if not provided or provided != API_KEY:
        raise HTTPException(status_code=401, detail="invalid or missing api key")


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


class LoanPartRequest(BaseModel):
    # 缺失或非正数同样交给计算引擎报“参数不完整”
    amount: Optional[float] = Field(None, le=MAX_PRINCIPAL, description="贷款本金（元）")
    term_months: Optional[int] = Field(None, le=MAX_TERM_MONTHS, description="贷款期数（月）")
    annual_rate: Optional[float] = Field(None, ge=0, le=MAX_ANNUAL_RATE, description="年利率（小数），例如 0.045")


class LoanParametersRequest(BaseModel):
    loan_type: str = Field(..., description="commercial(商贷) / housing_fund(公积金) / combination(组合贷)")
    method: str = Field("equal_payment", description="还款方式：equal_payment(等额本息) / equal_principal(等额本金)")

    # 单一贷款字段；缺失或非正数时由计算引擎报“参数不完整”
    amount: Optional[float] = Field(None, le=MAX_PRINCIPAL, description="贷款本金（元）")
    term_months: Optional[int] = Field(None, le=MAX_TERM_MONTHS, description="贷款期数（月）")
    annual_rate: Optional[float] = Field(None, ge=0, le=MAX_ANNUAL_RATE, description="年利率（小数）")

    # 组合贷字段
    commercial_part: Optional[LoanPartRequest] = None
    housing_fund_part: Optional[LoanPartRequest] = None

    @field_validator("loan_type")
    @classmethod
    def _validate_loan_type(cls, value: str) -> str:
        return normalize_loan_type(value)

    @field_validator("method")
    @classmethod
    def _validate_method(cls, value: str) -> str:
        return normalize_method(value)


class PrepaymentEventRequest(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="提前还款计划标识")
    month: int = Field(..., ge=1, le=MAX_TERM_MONTHS, description="第几期还款后执行（从 1 开始）")
    amount: float = Field(..., gt=0, le=MAX_PRINCIPAL, description="提前还款金额（元）")
    strategy: str = Field(..., description="reduce_term(缩短年限) / reduce_payment(减少月供)")
    target: Optional[str] = Field(None, description="组合贷必填：commercial / housing_fund")

    @field_validator("strategy")
    @classmethod
    def _validate_strategy(cls, value: str) -> str:
        return normalize_strategy(value)


class CalcRequest(BaseModel):
    parameters: LoanParametersRequest
    prepayment_events: List[PrepaymentEventRequest] = Field(default_factory=list, max_length=MAX_PREPAYMENTS)


def _to_engine(body: CalcRequest) -> Tuple[LoanParameters, Tuple[PrepaymentEvent, ...]]:
    p = body.parameters

    def _part(part: Optional[LoanPartRequest]) -> Optional[LoanPart]:
        if part is None:
            return None
        return LoanPart(amount=part.amount, term_months=part.term_months, annual_rate=part.annual_rate)

    params = LoanParameters(
        loan_type=p.loan_type,
        method=p.method,
        amount=p.amount,
        term_months=p.term_months,
        annual_rate=p.annual_rate,
        commercial_part=_part(p.commercial_part),
        housing_fund_part=_part(p.housing_fund_part),
    )
    events = tuple(
        PrepaymentEvent(id=e.id, month=e.month, amount=e.amount, strategy=e.strategy, target=e.target)
        for e in body.prepayment_events
    )
    return params, events


def _run(body: CalcRequest) -> CalculationOutcome:
    params, events = _to_engine(body)
    try:
        outcome = calculate(params, events)
    except ValueError as e:
        logger.warning("rejected %s calculation: %s", params.loan_type, e)
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(
        "%s calculation with %d prepayments: interest saved %.2f",
        params.loan_type,
        len(events),
        outcome.savings.interest_saved,
    )
    return outcome


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.post(
    "/v1/loans/prepayment:calc",
    tags=["mortgage"],
    responses={400: {"description": "Incomplete loan parameters or mistargeted prepayment"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_prepayment(request: Request, body: CalcRequest, _=Depends(require_api_key)) -> dict:
    """原方案、提前还款后方案与节省汇总。"""
    return _run(body).to_dict()


@app.post(
    "/v1/loans/prepayment:export-zip",
    tags=["mortgage"],
    responses={400: {"description": "Incomplete loan parameters or mistargeted prepayment"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_zip(request: Request, body: CalcRequest, _=Depends(require_api_key)):
    """导出还款明细 ZIP（原方案 / 提前还款后 / 年度利息对比，各一份 Excel）。"""
    outcome = _run(body)

    zip_bytes = outcome_to_zip(outcome)
    _ensure_export_size(len(zip_bytes))

    return StreamingResponse(
        BytesIO(zip_bytes),
        media_type="application/zip",
        headers={
            "Content-Disposition": "attachment; filename=loan_schedules.zip; "
            f"filename*=UTF-8''{quote('提前还款分析.zip')}",
            "X-Interest-Saved": f"{float(outcome.savings.interest_saved):.2f}",
            "X-Term-Reduction": str(outcome.savings.term_reduction_months),
        },
    )


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > MAX_EXPORT_BYTES:
        raise HTTPException(status_code=413, detail="export file too large")
