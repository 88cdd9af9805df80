"""
Task service — single-entity CRUD for deal tasks.

Business context:
    Tasks are created one at a time, either directly by a user or by the
    template application engine. ``persist_task`` is the shared creation
    primitive: it validates and flushes but does not commit, so callers
    control the transaction (template application wraps each call in its
    own SAVEPOINT).

    Phase / category / status are taxonomy tokens. New values are checked
    against the injected ``TaxonomyStore``; a task already carrying a value
    that has since been removed from the store keeps it, and an update that
    re-sends the unchanged value is accepted.

    Completion invariant: ``completed_at`` is set iff status == "completed".
    See ``Task.mark_status`` / ``Task.clear_completion``.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from diligence.core.exceptions import NotFoundError, TransportError, ValidationError
from diligence.models import db
from diligence.models.activity import record_activity
from diligence.models.deal import STATUS_COMPLETED, STATUS_NOT_STARTED, Deal, Task
from diligence.models.user import User
from diligence.services.taxonomy_service import (
    CATEGORY,
    PHASE,
    STATUS,
    TaxonomyStore,
    get_taxonomy_store,
)
from diligence.utils.helpers import commit_or_raise, parse_date_input

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 300

_CLASSIFICATION_FIELDS = (("phase", PHASE), ("category", CATEGORY))


def task_affects(deal_id: int) -> list[str]:
    """Aggregates invalidated by any task mutation on *deal_id*."""
    return [f"deal:{deal_id}:tasks", f"deal:{deal_id}:activity"]


# ── Validation helpers ───────────────────────────────────────────────────────


def _clean_title(value) -> str:
    title = str(value or "").strip()
    if not title:
        raise ValidationError("Title is required.", details={"title": "required"})
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title must be ≤ {MAX_TITLE_LENGTH} characters.",
            details={"title": "too long"},
        )
    return title


def _check_taxonomy(field: str, namespace: str, value, taxonomy: TaxonomyStore) -> str:
    token = (value or "").strip() if isinstance(value, str) else value
    if not token:
        raise ValidationError(f"{field.capitalize()} is required.", details={field: "required"})
    if not taxonomy.is_known(namespace, token):
        raise ValidationError(
            f"Unknown {namespace} value '{token}'.",
            details={field: f"unknown {namespace} value"},
        )
    return token


def _check_assignee(value) -> int | None:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError("assigned_to must be a user id.", details={"assigned_to": "invalid"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            "assigned_to must be a user id.", details={"assigned_to": "invalid"}
        ) from None


def _check_due_date(value):
    try:
        return parse_date_input(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"due_date": "invalid date"}) from None


def _get_deal(deal_id) -> Deal:
    deal = db.session.get(Deal, deal_id)
    if not deal:
        raise NotFoundError(resource="Deal", resource_id=deal_id)
    return deal


def _get_task(task_id) -> Task:
    task = db.session.get(Task, task_id)
    if not task:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


# ── Creation primitive ───────────────────────────────────────────────────────


def persist_task(data: dict, taxonomy: TaxonomyStore) -> Task:
    """Validate *data*, add a Task and flush. Never commits.

    Required keys: deal_id, title, phase, category.
    Optional: description, status (default not_started), due_date, assigned_to.

    Raises:
        ValidationError: missing title, unknown taxonomy value, bad date.
        NotFoundError: deal does not exist.
        SQLAlchemyError: from the flush (e.g. FK violation on assigned_to).
    """
    deal = _get_deal(data.get("deal_id"))
    title = _clean_title(data.get("title"))
    phase = _check_taxonomy("phase", PHASE, data.get("phase"), taxonomy)
    category = _check_taxonomy("category", CATEGORY, data.get("category"), taxonomy)
    status = _check_taxonomy(
        "status", STATUS, data.get("status") or STATUS_NOT_STARTED, taxonomy
    )

    task = Task(
        deal_id=deal.id,
        title=title,
        description=data.get("description") or None,
        phase=phase,
        category=category,
        due_date=_check_due_date(data.get("due_date")),
        assigned_to=_check_assignee(data.get("assigned_to")),
    )
    task.mark_status(status)
    db.session.add(task)
    db.session.flush()
    return task


# ── Public CRUD ──────────────────────────────────────────────────────────────


def create_task(data: dict, *, taxonomy: TaxonomyStore | None = None,
                actor_user_id: int | None = None) -> dict:
    """Create one task, record the activity and commit."""
    taxonomy = taxonomy or get_taxonomy_store()
    try:
        task = persist_task(data, taxonomy)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Task insert failed: %s", exc, extra={"deal_id": data.get("deal_id")})
        raise TransportError(f"Could not create task: {exc.__class__.__name__}") from exc
    record_activity(task.deal_id, actor_user_id, "created", "task", task.id,
                    details=f"Created task: {task.title}")
    commit_or_raise("create task")
    logger.info("Task created id=%s title=%s", task.id, task.title,
                extra={"deal_id": task.deal_id})
    result = task.to_dict()
    result["affects"] = task_affects(task.deal_id)
    return result


def get_task(task_id: int) -> dict:
    return _get_task(task_id).to_dict()


def list_tasks(deal_id: int) -> list[Task]:
    """ORM tasks of one deal, oldest first."""
    _get_deal(deal_id)
    stmt = select(Task).where(Task.deal_id == deal_id).order_by(Task.id)
    return list(db.session.execute(stmt).scalars().all())


def update_task(task_id: int, data: dict, *, taxonomy: TaxonomyStore | None = None,
                actor_user_id: int | None = None) -> dict:
    """Partial update. All fields are validated before any is applied.

    ``status`` drives the completion stamp. Sending ``completed_at: null``
    without a status clears the completion and reverts a completed task to
    in progress; sending a non-null ``completed_at`` marks it completed.
    """
    task = _get_task(task_id)
    taxonomy = taxonomy or get_taxonomy_store()
    was_completed = task.status == STATUS_COMPLETED

    changes: dict = {}
    if "title" in data:
        changes["title"] = _clean_title(data["title"])
    if "description" in data:
        changes["description"] = data["description"] or None
    for field, namespace in _CLASSIFICATION_FIELDS:
        if field in data and data[field] != getattr(task, field):
            changes[field] = _check_taxonomy(field, namespace, data[field], taxonomy)
    if "due_date" in data:
        changes["due_date"] = _check_due_date(data["due_date"])
    if "assigned_to" in data:
        assignee = _check_assignee(data["assigned_to"])
        if assignee is not None and not db.session.get(User, assignee):
            raise NotFoundError(resource="User", resource_id=assignee)
        changes["assigned_to"] = assignee

    new_status = None
    if "status" in data:
        new_status = data["status"]
        if new_status != task.status:
            new_status = _check_taxonomy("status", STATUS, new_status, taxonomy)

    for field, value in changes.items():
        setattr(task, field, value)
    if new_status is not None:
        task.mark_status(new_status)
    elif "completed_at" in data:
        if data["completed_at"]:
            task.mark_status(STATUS_COMPLETED)
        else:
            task.clear_completion()

    action = "completed" if task.status == STATUS_COMPLETED and not was_completed else "updated"
    record_activity(task.deal_id, actor_user_id, action, "task", task.id,
                    details=f"{action.capitalize()} task: {task.title}")
    commit_or_raise("update task")
    logger.info("Task %s id=%s status=%s", action, task.id, task.status,
                extra={"deal_id": task.deal_id})
    result = task.to_dict()
    result["affects"] = task_affects(task.deal_id)
    return result


def delete_task(task_id: int, *, actor_user_id: int | None = None) -> list[str]:
    """Delete a task. Returns the affected aggregates."""
    task = _get_task(task_id)
    deal_id, title = task.deal_id, task.title
    db.session.delete(task)
    record_activity(deal_id, actor_user_id, "deleted", "task", task_id,
                    details=f"Deleted task: {title}")
    commit_or_raise("delete task")
    logger.info("Task deleted id=%s", task_id, extra={"deal_id": deal_id})
    return task_affects(deal_id)
