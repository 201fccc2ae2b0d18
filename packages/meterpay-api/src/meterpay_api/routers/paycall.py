"""Quote and pay-per-call routes."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError

from meterpay_core.exceptions import InvalidRequestError
from meterpay_core.idempotency import IdempotencyGate
from meterpay_core.models import PaymentClaim
from meterpay_core.orchestrator import SettlementOrchestrator, SettlementResult
from meterpay_core.quotes import QuoteIssuer

logger = logging.getLogger("meterpay.api.paycall")

router = APIRouter(tags=["paycall"])

IDEMPOTENCY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key")
REPLAY_HEADER = "Idempotent-Replayed"


# Request/Response Models

class PaymentClaimBody(BaseModel):
    """Evidence of payment. Empty fields are rejected by the verifier, not here."""
    spend_blob: str = Field(default="", description="Base64 spend transaction")
    proof: str = Field(default="", description="Base64 settlement proof")
    sender: str = Field(default="", description="Payer identity")


class WorkRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, description="Endpoint the quote was issued for")
    args: Dict[str, Any] = Field(default_factory=dict, description="Handler arguments")


class PayCallRequest(BaseModel):
    quote_id: str = Field(..., min_length=1)
    payment_claim: PaymentClaimBody
    request: WorkRequest


class SettlementInfo(BaseModel):
    locator: str
    receiver: str
    round_hint: Optional[str] = None


class QuoteResponse(BaseModel):
    endpoint: str
    units: Dict[str, Union[int, float]]
    price_sats: int
    expires_at: str
    quote_id: str
    settlement: SettlementInfo


# Dependencies

class Dependencies:
    def __init__(
        self,
        issuer: QuoteIssuer,
        orchestrator: SettlementOrchestrator,
        idempotency: IdempotencyGate,
    ):
        self.issuer = issuer
        self.orchestrator = orchestrator
        self.idempotency = idempotency


def get_deps() -> Dependencies:
    """Dependency injection placeholder."""
    raise NotImplementedError("Must be overridden")


def get_idempotency_key(request: Request) -> Optional[str]:
    for header in IDEMPOTENCY_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()
    return None


def parse_unit_counts(request: Request) -> Dict[str, Union[int, float]]:
    """Every query parameter other than ``endpoint`` is a unit count."""
    units: Dict[str, Union[int, float]] = {}
    for key, raw in request.query_params.multi_items():
        if key == "endpoint":
            continue
        try:
            units[key] = int(raw)
        except ValueError:
            try:
                units[key] = float(raw)
            except ValueError:
                raise InvalidRequestError(f"{key} must be a number", field=key) from None
    return units


def _settlement_response(result: SettlementResult) -> Response:
    headers = {REPLAY_HEADER: "true"} if result.replayed else None
    return Response(
        content=result.response_json,
        status_code=result.http_status,
        media_type="application/json",
        headers=headers,
    )


async def _parse_paycall(request: Request) -> PayCallRequest:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        raise RequestValidationError(
            [{"loc": ("body",), "msg": "Request body must be valid JSON", "type": "json_invalid"}]
        ) from None
    try:
        return PayCallRequest.model_validate(payload)
    except ValidationError as e:
        errors = [{**error, "loc": ("body", *error["loc"])} for error in e.errors()]
        raise RequestValidationError(errors) from None


# Routes

@router.get("/quote", response_model=QuoteResponse)
async def get_quote(
    request: Request,
    endpoint: Optional[str] = Query(None, description="Endpoint to price"),
    deps: Dependencies = Depends(get_deps),
):
    """Issue a single-use, time-bound price quote for one unit of work.

    Any other query parameter is read as a unit count, e.g.
    ``/v1/quote?endpoint=summarize&tokens=2000``.
    """
    issued = await deps.issuer.issue_quote(endpoint or "", parse_unit_counts(request))
    return issued.to_dict()


@router.post("/paycall")
async def paycall(
    request: Request,
    deps: Dependencies = Depends(get_deps),
):
    """Settle a payment claim against a quote and run the paid work.

    A request whose ``Idempotency-Key`` already completed gets the stored
    response back unchanged, whatever its body.
    """
    idempotency_key = get_idempotency_key(request)
    if idempotency_key:
        cached = await deps.idempotency.lookup(idempotency_key)
        if cached is not None:
            logger.info("Idempotent replay", extra={"idempotency_key": idempotency_key})
            return _settlement_response(SettlementResult.replay(cached))

    body = await _parse_paycall(request)
    claim = PaymentClaim(
        spend_blob=body.payment_claim.spend_blob,
        proof=body.payment_claim.proof,
        sender=body.payment_claim.sender,
    )
    result = await deps.orchestrator.settle(
        body.quote_id,
        claim,
        body.request.endpoint,
        body.request.args,
        idempotency_key=idempotency_key,
    )
    return _settlement_response(result)
