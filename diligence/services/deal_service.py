"""
Deal service — deal CRUD and the create-with-template flow.

``end_date`` is derived: it is recomputed as start_date + review window
whenever start_date is written and cleared with it. A client-supplied
end_date is ignored.
"""

import logging

from flask import current_app
from sqlalchemy import func, select

from diligence.core.exceptions import NotFoundError, ValidationError
from diligence.models import db
from diligence.models.activity import ActivityLog, record_activity
from diligence.models.deal import DEAL_STATUSES, Deal
from diligence.services.due_dates import REVIEW_WINDOW_DAYS, derive_end_date
from diligence.services.template_application import apply_template
from diligence.services.template_service import get_template_model
from diligence.utils.helpers import commit_or_raise, parse_date_input

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200


def _review_window() -> int:
    return int(current_app.config.get("DEAL_REVIEW_WINDOW_DAYS", REVIEW_WINDOW_DAYS))


def _get_deal(deal_id) -> Deal:
    deal = db.session.get(Deal, deal_id)
    if not deal:
        raise NotFoundError(resource="Deal", resource_id=deal_id)
    return deal


def _deal_affects(deal_id: int) -> list[str]:
    return ["deals", f"deal:{deal_id}", f"deal:{deal_id}:activity"]


def _clean_name(value) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError("Deal name is required.", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Deal name must be ≤ {MAX_NAME_LENGTH} characters.",
                              details={"name": "too long"})
    return name


def _clean_status(value) -> str:
    if value not in DEAL_STATUSES:
        raise ValidationError(
            f"Invalid deal status '{value}'.",
            details={"status": f"Must be one of: {', '.join(DEAL_STATUSES)}"},
        )
    return value


def _clean_start_date(value):
    try:
        return parse_date_input(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"start_date": "invalid date"}) from None


def _set_start_date(deal: Deal, start_date) -> None:
    deal.start_date = start_date
    deal.end_date = derive_end_date(start_date, _review_window())


# ── Queries ──────────────────────────────────────────────────────────────────


def list_deals(limit: int = 200, offset: int = 0) -> tuple[list[dict], int]:
    """Newest first. Returns ``(deals, total_count)``."""
    total = db.session.execute(select(func.count(Deal.id))).scalar_one()
    stmt = (
        select(Deal)
        .order_by(Deal.created_at.desc(), Deal.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [d.to_dict() for d in db.session.execute(stmt).scalars().all()], total


def get_deal(deal_id: int, include_tasks: bool = False) -> dict:
    return _get_deal(deal_id).to_dict(include_tasks=include_tasks)


def list_activity(deal_id: int, limit: int = 100) -> list[dict]:
    """Newest activity first."""
    _get_deal(deal_id)
    stmt = (
        select(ActivityLog)
        .where(ActivityLog.deal_id == deal_id)
        .order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
        .limit(limit)
    )
    return [a.to_dict() for a in db.session.execute(stmt).scalars().all()]


# ── Mutations ────────────────────────────────────────────────────────────────


def create_deal(data: dict, *, template_id: int | None = None,
                actor_user_id: int | None = None, taxonomy=None) -> dict:
    """Create a deal; with *template_id*, immediately apply that template.

    The deal is committed before the template runs, so a template with
    failing items still leaves the deal in place.
    """
    name = _clean_name(data.get("name"))
    status = _clean_status(data.get("status") or "active")
    start_date = _clean_start_date(data.get("start_date"))
    if template_id is not None:
        get_template_model(template_id)

    deal = Deal(name=name, status=status)
    _set_start_date(deal, start_date)
    db.session.add(deal)
    db.session.flush()
    record_activity(deal.id, actor_user_id, "created", "deal", deal.id,
                    details=f"Created deal: {deal.name}")
    commit_or_raise("create deal")
    logger.info("Deal created id=%s name=%s", deal.id, deal.name, extra={"deal_id": deal.id})

    result = {"deal": deal.to_dict(), "affects": _deal_affects(deal.id)}
    if template_id is not None:
        application = apply_template(deal.id, template_id,
                                     actor_user_id=actor_user_id, taxonomy=taxonomy)
        result["template_application"] = application.to_dict()
        result["affects"] = sorted(set(result["affects"]) | set(application.affects))
    return result


def update_deal(deal_id: int, data: dict, *, actor_user_id: int | None = None) -> dict:
    """Partial update. ``end_date`` follows ``start_date`` and is not writable."""
    deal = _get_deal(deal_id)

    name = _clean_name(data["name"]) if "name" in data else None
    status = _clean_status(data["status"]) if "status" in data else None
    start_given = "start_date" in data
    start_date = _clean_start_date(data["start_date"]) if start_given else None

    if name is not None:
        deal.name = name
    if status is not None:
        deal.status = status
    if start_given:
        _set_start_date(deal, start_date)

    record_activity(deal.id, actor_user_id, "updated", "deal", deal.id,
                    details=f"Updated deal: {deal.name}")
    commit_or_raise("update deal")
    logger.info("Deal updated id=%s", deal.id, extra={"deal_id": deal.id})
    result = deal.to_dict()
    result["affects"] = _deal_affects(deal.id)
    return result
