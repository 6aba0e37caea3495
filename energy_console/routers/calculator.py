import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..background import spawn
from ..database import get_db
from ..schemas import (
    CardCompletePayload,
    FieldChangePayload,
    FormSubmissionCheck,
    LeadSubmission,
    MetricsRequest,
    SavingsRequest,
    SessionPayload,
    StepPayload,
    step_errors,
)
from ..services.calculations import CalculationInputs, calculate_heat_pump_savings, heating_type_label
from ..services.cards import card_to_dict, list_cards
from ..services.completion import (
    CompletionOutcome,
    complete_non_form_card,
    get_session_card_completions,
    initialize_clean_session,
    record_field_change,
)
from ..services.errors import NotFoundError, RateLimited
from ..services.form_schemas import get_active_form_schema, parse_schema_data, submission_errors
from ..services.leads import RequestMeta, lead_rate_limiter, submit_lead
from ..services.mailer import notify_new_lead
from ..services.metrics import NormalizedLead, compute_metrics
from ..services.reveal import reveal_scheduler
from ..services.shortcodes import process_display_content
from ..services.themes import get_active_theme, get_card_overrides, theme_css_variables
from ..settings.config import settings
from ..utils import client_ip, new_session_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calculator", tags=["calculator"])


class DisplayPayload(BaseModel):
    content: str
    form_data: dict = Field(default_factory=dict)


def _session_view(session_id: str) -> dict:
    return {
        "session_id": session_id,
        "revealed": sorted(reveal_scheduler.revealed(session_id)),
        "pending": sorted(reveal_scheduler.pending(session_id)),
    }


def _apply_reveal(outcome: CompletionOutcome) -> None:
    if outcome.is_complete and outcome.next_card_id and outcome.reveal is not None:
        reveal_scheduler.schedule(outcome.session_id, outcome.next_card_id, outcome.reveal)


@router.get("/cards")
async def calculator_cards(db: AsyncSession = Depends(get_db)):
    cards = await list_cards(db, active_only=True)
    theme = await get_active_theme(db)
    overrides = await get_card_overrides(db, theme["id"]) if theme["id"] != "default" else {}
    return {
        "cards": [card_to_dict(c) for c in cards],
        "theme": theme,
        "card_overrides": overrides,
    }


@router.get("/theme.css", response_class=PlainTextResponse)
async def calculator_theme_css(db: AsyncSession = Depends(get_db)):
    theme = await get_active_theme(db)
    return PlainTextResponse(theme_css_variables(theme["theme_data"]), media_type="text/css")


@router.post("/session")
async def calculator_start_session(payload: SessionPayload, db: AsyncSession = Depends(get_db)):
    """Start (or restart) a calculator run with only the first card revealed."""
    session_id = payload.session_id or new_session_id()
    await initialize_clean_session(db, session_id)
    cards = await list_cards(db, active_only=True)
    reveal_scheduler.start(session_id, cards[0].id if cards else None)
    return _session_view(session_id)


@router.delete("/session/{session_id}")
async def calculator_end_session(session_id: str):
    reveal_scheduler.teardown(session_id)
    return {"ok": True}


@router.get("/session/{session_id}")
async def calculator_session_state(session_id: str, db: AsyncSession = Depends(get_db)):
    completions = await get_session_card_completions(db, session_id)
    view = _session_view(session_id)
    view["completed"] = sorted(c.card_id for c in completions if c.is_complete)
    return view


@router.post("/field")
async def calculator_field_change(payload: FieldChangePayload, db: AsyncSession = Depends(get_db)):
    outcome = await record_field_change(db, payload.card_id, payload.field_name, payload.value, payload.session_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Card not found")
    _apply_reveal(outcome)
    return {**outcome.as_dict(), **_session_view(payload.session_id)}


@router.post("/complete")
async def calculator_complete_card(payload: CardCompletePayload, db: AsyncSession = Depends(get_db)):
    outcome = await complete_non_form_card(db, payload.card_id, payload.session_id, payload.trigger)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Card not found")
    _apply_reveal(outcome)
    return {**outcome.as_dict(), **_session_view(payload.session_id)}


@router.post("/savings")
async def calculator_savings(payload: SavingsRequest):
    results = calculate_heat_pump_savings(CalculationInputs(**payload.model_dump()))
    data = results.as_dict()
    if data["payback_period"] == float("inf"):
        data["payback_period"] = None
    return {"results": data, "heating_type": heating_type_label(payload.current_heating_type)}


@router.post("/metrics")
async def calculator_metrics(payload: MetricsRequest):
    return compute_metrics(NormalizedLead.from_form_data(payload.form_data))


@router.post("/validate-step")
async def calculator_validate_step(payload: StepPayload):
    try:
        errors = step_errors(payload.step, payload.data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"valid": errors is None, "errors": errors or {}}


@router.get("/form-schema")
async def calculator_form_schema(name: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    fs = await get_active_form_schema(db, name)
    if fs is None:
        raise NotFoundError("No active form schema found")
    return {"id": fs.id, "name": fs.name, "version": fs.version, "schema": fs.schema_data or {}}


@router.post("/form-schema/validate")
async def calculator_validate_form(payload: FormSubmissionCheck, db: AsyncSession = Depends(get_db)):
    fs = await get_active_form_schema(db, payload.name)
    if fs is None:
        raise NotFoundError("No active form schema found")
    errors = submission_errors(parse_schema_data(fs.schema_data), payload.form_data)
    return {"valid": not errors, "errors": errors}


@router.post("/display")
async def calculator_display(payload: DisplayPayload, db: AsyncSession = Depends(get_db)):
    return {"content": await process_display_content(db, payload.content, payload.form_data)}


@router.post("/submit")
async def calculator_submit_lead(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    meta = RequestMeta(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
        source_page=request.headers.get("referer") or str(request.base_url),
    )
    try:
        LeadSubmission.model_validate(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "code": "VALIDATION_ERROR", "message": "Missing required fields",
                     "errors": [e["msg"] for e in exc.errors()]},
        )

    try:
        lead = await submit_lead(db, body, meta)
    except RateLimited as exc:
        return JSONResponse(
            status_code=429,
            content={"status": "error", "code": "RATE_LIMITED", "message": exc.message},
            headers={"X-RateLimit-Limit": str(lead_rate_limiter.max_requests), "X-RateLimit-Remaining": "0"},
        )

    session_id: Optional[str] = body.get("session_id")
    if session_id:
        reveal_scheduler.teardown(session_id)
    if settings.SEND_LEAD_EMAILS:
        spawn(notify_new_lead(lead.id), name="notify_new_lead")

    results = dict(lead.calculation_results or {})
    return {"status": "success", "lead_id": lead.id, "calculations": results}
