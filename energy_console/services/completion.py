# energy_console/services/completion.py
"""Card completion engine.

A card's configuration is normalized on read into two independent axes:

* a completion rule (``any_field``, ``required_fields``, ``all_fields``) that
  decides when a form card counts as done, and
* a reveal timing (``immediately`` or ``after_delay``) that decides when the
  next card gets reveal permission once this one is done.

Old cards store a single ``reveal_next_conditions`` object instead; it is
mapped onto the two axes by :func:`normalize_card_rules` and nowhere else.

Completion tracking writes are best-effort: a failed upsert is logged, rolled
back and reported through :class:`BestEffort` so the calculator flow keeps
moving. Session resets are not best-effort and raise.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.models import CardCompletion, CardTemplate, CardType, FieldCompletion
from energy_console.services.values import is_blank
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_REVEAL_DELAY = 1
MAX_REVEAL_DELAY = 60

AUTO_COMPLETE_TYPES = {CardType.info.value, CardType.visual.value, CardType.calculation.value}


class CompletionType(str, enum.Enum):
    any_field = "any_field"
    required_fields = "required_fields"
    all_fields = "all_fields"


class RevealMode(str, enum.Enum):
    immediately = "immediately"
    after_delay = "after_delay"


@dataclass(frozen=True, slots=True)
class CompletionRule:
    type: CompletionType = CompletionType.any_field
    required_field_names: tuple[str, ...] = ()

    def as_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type.value}
        if self.required_field_names:
            out["required_field_names"] = list(self.required_field_names)
        return out


@dataclass(frozen=True, slots=True)
class RevealTiming:
    timing: RevealMode = RevealMode.immediately
    delay_seconds: int = 0

    def as_dict(self) -> dict:
        out: dict[str, Any] = {"timing": self.timing.value}
        if self.timing is RevealMode.after_delay:
            out["delay_seconds"] = self.delay_seconds
        return out


IMMEDIATE = RevealTiming()


@dataclass(frozen=True, slots=True)
class CardRules:
    completion: CompletionRule = field(default_factory=CompletionRule)
    reveal: RevealTiming = IMMEDIATE

    def as_dict(self) -> dict:
        return {"completion": self.completion.as_dict(), "reveal": self.reveal.as_dict()}


@dataclass(slots=True)
class BestEffort(Generic[T]):
    """Result of a write whose failure must not interrupt the visitor."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class CompletionOutcome:
    card_id: str
    session_id: str
    is_complete: bool
    next_card_id: Optional[str] = None
    reveal: Optional[RevealTiming] = None
    trigger: Optional[str] = None
    tracked: bool = True  # False when a completion write was dropped

    def as_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "session_id": self.session_id,
            "is_complete": self.is_complete,
            "next_card_id": self.next_card_id,
            "reveal": self.reveal.as_dict() if self.reveal else None,
            "trigger": self.trigger,
            "tracked": self.tracked,
        }


# ---------------------------------------------------------------------------
# Rule normalization
# ---------------------------------------------------------------------------

def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _delay(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return settings.DEFAULT_REVEAL_DELAY_SECONDS
    if value <= 0:
        return settings.DEFAULT_REVEAL_DELAY_SECONDS
    return value


def parse_completion_rule(raw: Any) -> Optional[CompletionRule]:
    """Read ``completion_rules`` (``{"form_completion": {...}}``); None when absent or unusable."""
    if not isinstance(raw, dict):
        return None
    form_completion = raw.get("form_completion")
    if not isinstance(form_completion, dict):
        return None
    try:
        ctype = CompletionType(form_completion.get("type"))
    except ValueError:
        logger.warning("Unknown completion rule type %r; using any_field", form_completion.get("type"))
        return CompletionRule()
    names = form_completion.get("required_field_names") or []
    if not isinstance(names, (list, tuple)):
        names = []
    return CompletionRule(ctype, tuple(str(n) for n in names if n))


def parse_reveal_timing(raw: Any) -> Optional[RevealTiming]:
    if not isinstance(raw, dict) or not raw.get("timing"):
        return None
    if raw.get("timing") == RevealMode.after_delay.value:
        return RevealTiming(RevealMode.after_delay, _delay(raw.get("delay_seconds")))
    return IMMEDIATE


def legacy_to_rules(raw: Any) -> Optional[CardRules]:
    """Map the single-field ``reveal_next_conditions`` shape onto the two axes."""
    if not isinstance(raw, dict):
        return None
    kind = raw.get("type")
    if kind == "required_complete":
        return CardRules(CompletionRule(CompletionType.required_fields), IMMEDIATE)
    if kind == "all_complete":
        return CardRules(CompletionRule(CompletionType.all_fields), IMMEDIATE)
    if kind == "after_delay":
        return CardRules(CompletionRule(), RevealTiming(RevealMode.after_delay, _delay(raw.get("delay_seconds"))))
    if kind == "immediately":
        return CardRules(CompletionRule(), IMMEDIATE)
    return None


def normalize_card_rules(card: Any) -> CardRules:
    """Canonical rules for a card model (or a plain dict of its columns)."""
    legacy = legacy_to_rules(_get(card, "reveal_next_conditions"))
    completion = parse_completion_rule(_get(card, "completion_rules"))
    if completion is None:
        completion = legacy.completion if legacy else CompletionRule()
    reveal = parse_reveal_timing(_get(card, "reveal_timing"))
    if reveal is None:
        reveal = legacy.reveal if legacy else IMMEDIATE
    return CardRules(completion, reveal)


def validate_rules_payload(completion: dict, reveal: dict, field_names: Iterable[str]) -> list[str]:
    """Problems with rules authored in the card builder; empty list when valid."""
    errors: list[str] = []
    ctype = (completion or {}).get("type")
    if ctype not in {c.value for c in CompletionType}:
        errors.append(f"Unknown completion rule '{ctype}'")
    known = set(field_names)
    for name in (completion or {}).get("required_field_names") or []:
        if name not in known:
            errors.append(f"Required field '{name}' does not exist on this card")
    timing = (reveal or {}).get("timing")
    if timing not in {r.value for r in RevealMode}:
        errors.append(f"Unknown reveal timing '{timing}'")
    elif timing == RevealMode.after_delay.value:
        delay = (reveal or {}).get("delay_seconds")
        if not isinstance(delay, int) or isinstance(delay, bool) or not (MIN_REVEAL_DELAY <= delay <= MAX_REVEAL_DELAY):
            errors.append(f"Delay must be between {MIN_REVEAL_DELAY} and {MAX_REVEAL_DELAY} seconds")
    return errors


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------

def required_field_names(rule: CompletionRule, fields: Sequence[Any]) -> set[str]:
    if rule.required_field_names:
        return set(rule.required_field_names)
    return {
        _get(f, "field_name")
        for f in fields
        if _get(f, "required") or _get(f, "is_completion_required")
    }


def evaluate_completion(rule: CompletionRule, fields: Sequence[Any], completions: Iterable[Any]) -> bool:
    """Decide completion from the card's fields and its field-completion rows."""
    rows = [c for c in completions if _get(c, "is_complete")]
    completed = {_get(c, "field_name") for c in rows}

    if rule.type is CompletionType.all_fields:
        # counts rows, so stale rows from renamed or unknown fields count too
        return len(fields) > 0 and len(rows) == len(fields)

    if rule.type is CompletionType.required_fields:
        required = required_field_names(rule, fields)
        if required:
            return required <= completed
        # no required fields configured: any field will do

    return len(completed) > 0


def is_non_empty(value: Any) -> bool:
    return not is_blank(value)


def card_auto_completes(card_type: str) -> bool:
    return card_type in AUTO_COMPLETE_TYPES


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    return pg_insert if dialect == "postgresql" else sqlite_insert


async def _upsert(db: AsyncSession, model, values: dict, keys: list[str]):
    insert = _insert_for(db)
    stmt = insert(model).values(**values)
    update_cols = {k: stmt.excluded[k] for k in values if k not in keys}
    update_cols["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=keys, set_=update_cols).returning(model)
    row = (await db.execute(stmt, execution_options={"populate_existing": True})).scalars().one()
    await db.commit()
    return row


async def update_field_completion(
    db: AsyncSession, card_id: str, field_name: str, field_value: Any, session_id: str
) -> BestEffort[FieldCompletion]:
    """Record the latest value of a field for the session."""
    is_complete = is_non_empty(field_value)
    if field_value is None:
        stored = ""
    elif isinstance(field_value, (list, tuple)):
        stored = ",".join(str(v) for v in field_value)
    else:
        stored = str(field_value)
    try:
        row = await _upsert(
            db,
            FieldCompletion,
            {
                "card_id": card_id,
                "field_name": field_name,
                "session_id": session_id,
                "field_value": stored,
                "is_complete": is_complete,
                "completed_at": _now() if is_complete else None,
            },
            ["card_id", "field_name", "session_id"],
        )
        return BestEffort(row)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Field completion not recorded card=%s field=%s: %s", card_id, field_name, exc)
        return BestEffort(error=str(exc))


async def update_card_completion(
    db: AsyncSession,
    card_id: str,
    session_id: str,
    is_complete: bool,
    completion_trigger: Optional[str] = None,
    completion_data: Optional[dict] = None,
) -> BestEffort[CardCompletion]:
    try:
        row = await _upsert(
            db,
            CardCompletion,
            {
                "card_id": card_id,
                "session_id": session_id,
                "is_complete": is_complete,
                "completed_at": _now() if is_complete else None,
                "completion_trigger": completion_trigger,
                "completion_data": completion_data or {},
            },
            ["card_id", "session_id"],
        )
        return BestEffort(row)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Card completion not recorded card=%s: %s", card_id, exc)
        return BestEffort(error=str(exc))


async def get_field_completions(db: AsyncSession, card_id: str, session_id: str) -> list[FieldCompletion]:
    rows = await db.execute(
        select(FieldCompletion).where(
            FieldCompletion.card_id == card_id,
            FieldCompletion.session_id == session_id,
        )
    )
    return list(rows.scalars().all())


async def get_card_completion(db: AsyncSession, card_id: str, session_id: str) -> Optional[CardCompletion]:
    return (
        await db.execute(
            select(CardCompletion).where(
                CardCompletion.card_id == card_id,
                CardCompletion.session_id == session_id,
            )
        )
    ).scalar_one_or_none()


async def get_session_card_completions(db: AsyncSession, session_id: str) -> list[CardCompletion]:
    rows = await db.execute(select(CardCompletion).where(CardCompletion.session_id == session_id))
    return list(rows.scalars().all())


async def _load_card(db: AsyncSession, card_id: str) -> Optional[CardTemplate]:
    return await db.get(CardTemplate, card_id)


async def check_card_completion(db: AsyncSession, card_id: str, session_id: str) -> bool:
    try:
        card = await _load_card(db, card_id)
        if card is None:
            logger.warning("Completion check for unknown card %s", card_id)
            return False
        rules = normalize_card_rules(card)
        completions = await get_field_completions(db, card_id, session_id)
        complete = evaluate_completion(rules.completion, card.fields, completions)
        logger.debug(
            "Completion check card=%s rule=%s fields=%d completed=%d -> %s",
            card.name, rules.completion.type.value, len(card.fields),
            sum(1 for c in completions if c.is_complete), complete,
        )
        return complete
    except SQLAlchemyError:
        logger.exception("Completion check failed for card %s", card_id)
        return False


async def next_card(db: AsyncSession, card: CardTemplate) -> Optional[CardTemplate]:
    """The active card that follows ``card`` in display order."""
    cards = (
        await db.execute(
            select(CardTemplate)
            .where(CardTemplate.is_active.is_(True))
            .order_by(CardTemplate.display_order, CardTemplate.created_at)
        )
    ).scalars().all()
    ids = [c.id for c in cards]
    if card.id not in ids:
        return None
    idx = ids.index(card.id)
    return cards[idx + 1] if idx + 1 < len(cards) else None


async def _outcome(db: AsyncSession, card: CardTemplate, session_id: str, complete: bool, trigger: Optional[str], tracked: bool) -> CompletionOutcome:
    outcome = CompletionOutcome(
        card_id=card.id, session_id=session_id, is_complete=complete, trigger=trigger, tracked=tracked
    )
    if complete:
        following = await next_card(db, card)
        if following is not None:
            outcome.next_card_id = following.id
            outcome.reveal = normalize_card_rules(card).reveal
    return outcome


async def record_field_change(
    db: AsyncSession, card_id: str, field_name: str, field_value: Any, session_id: str
) -> Optional[CompletionOutcome]:
    """Track a field change and decide whether its card is now complete.

    Returns None for an unknown card. The field row and the card row are
    written best-effort; ``tracked`` is False when either write was dropped.
    """
    card = await _load_card(db, card_id)
    if card is None:
        return None
    field_result = await update_field_completion(db, card_id, field_name, field_value, session_id)
    complete = await check_card_completion(db, card_id, session_id)
    tracked = field_result.ok
    if complete:
        card_result = await update_card_completion(db, card_id, session_id, True, field_name)
        tracked = tracked and card_result.ok
    return await _outcome(db, card, session_id, complete, field_name if complete else None, tracked)


async def complete_non_form_card(
    db: AsyncSession, card_id: str, session_id: str, trigger: Optional[str] = None
) -> Optional[CompletionOutcome]:
    """Mark a card complete outside of field changes.

    Info, visual and calculation cards auto-complete when revealed; the submit
    card completes on the submit click. Form cards are only marked when their
    rule already holds.
    """
    card = await _load_card(db, card_id)
    if card is None:
        return None
    if card.type == CardType.form.value:
        complete = await check_card_completion(db, card_id, session_id)
    else:
        complete = True
    if trigger is None:
        trigger = "submit_click" if card.type == CardType.submit.value else "auto_complete"
    tracked = True
    if complete:
        tracked = (await update_card_completion(db, card_id, session_id, True, trigger)).ok
    return await _outcome(db, card, session_id, complete, trigger if complete else None, tracked)


async def clear_session_field_completions(db: AsyncSession, session_id: str) -> int:
    result = await db.execute(delete(FieldCompletion).where(FieldCompletion.session_id == session_id))
    await db.commit()
    logger.info("Cleared %s field completions for session %s", result.rowcount, session_id)
    return result.rowcount or 0


async def initialize_clean_session(db: AsyncSession, session_id: str) -> None:
    """Remove every completion row recorded for the session."""
    await clear_session_field_completions(db, session_id)
    await db.execute(delete(CardCompletion).where(CardCompletion.session_id == session_id))
    await db.commit()
    logger.info("Initialized clean session %s", session_id)
