"""
Template Application Engine.

Materialises one Task per TaskTemplateItem of a template onto a deal.

Algorithm:
    1. Load the deal (start date may be absent) and the template items.
    2. For each item build a draft: title / description / phase / category
       copied verbatim, status = not_started, due date from
       ``resolve_due_date(deal.start_date, item.days_from_start)``, assignee
       = the item's default assignee.
    3. Hand the draft to the task creator inside its own SAVEPOINT. A failure
       rolls back that item only and is recorded as an ``ItemFailure``; the
       remaining items are still attempted.
    4. Commit once after every item was attempted.

Failure policy:
    Best effort, never all-or-nothing. ``ValidationError`` and persistence
    errors (``TransportError`` / ``SQLAlchemyError``) become per-item failures
    and are never retried here. Items are processed sequentially; outcomes do
    not depend on one another. The single commit of step 4 is the exception:
    if it fails, ``TransportError`` propagates to the caller and the whole
    batch is rolled back, so no task of that run survives.

Idempotency:
    None. Running the same template twice creates duplicate tasks. Callers
    resubmitting after a partial failure pass ``skip_item_ids`` with the ids
    of items that already succeeded.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from diligence.core.exceptions import NotFoundError, TransportError, ValidationError
from diligence.models import db
from diligence.models.activity import record_activity
from diligence.models.deal import STATUS_NOT_STARTED, Deal
from diligence.services.due_dates import resolve_due_date
from diligence.services.task_service import persist_task
from diligence.services.taxonomy_service import TaxonomyStore, get_taxonomy_store
from diligence.services.template_service import get_template_model
from diligence.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

# (draft, taxonomy) -> created Task (ORM object or dict)
TaskCreator = Callable[[dict, TaxonomyStore], object]

FAILURE_VALIDATION = "validation"
FAILURE_TRANSPORT = "transport"
FAILURE_UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class ItemFailure:
    """One template item that did not produce a task."""

    item_id: int | None
    title: str
    reason: str
    kind: str = FAILURE_VALIDATION
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "reason": self.reason,
            "kind": self.kind,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class TemplateApplicationResult:
    """Batch outcome. Never claims success unless ``failures`` is empty."""

    deal_id: int
    template_id: int
    created_tasks: tuple[dict, ...] = ()
    failures: tuple[ItemFailure, ...] = ()
    skipped_item_ids: tuple[int, ...] = ()

    @property
    def created_count(self) -> int:
        return len(self.created_tasks)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def total(self) -> int:
        return self.created_count + self.failed_count

    @property
    def is_complete(self) -> bool:
        return not self.failures

    @property
    def summary(self) -> str:
        return f"Created {self.created_count} of {self.total} tasks"

    @property
    def affects(self) -> list[str]:
        return [f"deal:{self.deal_id}:tasks", f"deal:{self.deal_id}:activity"]

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "template_id": self.template_id,
            "created_tasks": list(self.created_tasks),
            "failures": [f.to_dict() for f in self.failures],
            "skipped_item_ids": list(self.skipped_item_ids),
            "total": self.total,
            "created_count": self.created_count,
            "failed_count": self.failed_count,
            "is_complete": self.is_complete,
            "summary": self.summary,
            "affects": self.affects,
        }


def build_task_draft(deal_id: int, deal_start_date, item) -> dict:
    """Task payload for one template item.

    Raises:
        ValidationError: the item's offset is not a non-negative integer.
    """
    return {
        "deal_id": deal_id,
        "title": item.title,
        "description": item.description,
        "phase": item.phase,
        "category": item.category,
        "status": STATUS_NOT_STARTED,
        "due_date": resolve_due_date(deal_start_date, item.days_from_start),
        "assigned_to": item.assigned_to,
    }


def _as_task_dict(created) -> dict:
    if hasattr(created, "to_dict"):
        return created.to_dict()
    return dict(created)


def apply_template(
    deal_id: int,
    template_id: int,
    *,
    actor_user_id: int | None = None,
    taxonomy: TaxonomyStore | None = None,
    task_creator: TaskCreator | None = None,
    skip_item_ids: Iterable[int] | None = None,
) -> TemplateApplicationResult:
    """Create one task per template item on *deal_id*.

    An empty template is a successful no-op.

    Raises:
        NotFoundError: deal or template does not exist (nothing is written).
        TransportError: the final commit failed (no task survives).
    """
    deal = db.session.get(Deal, deal_id)
    if not deal:
        raise NotFoundError(resource="Deal", resource_id=deal_id)
    template = get_template_model(template_id)
    taxonomy = taxonomy or get_taxonomy_store()
    creator = task_creator or persist_task
    skip = {int(i) for i in (skip_item_ids or ())}

    start_date = deal.start_date
    template_name = template.name
    pending = [
        (item.id, item.title, item)
        for item in template.items
        if item.id not in skip
    ]
    skipped = tuple(sorted(item.id for item in template.items if item.id in skip))
    log_extra = {"deal_id": deal_id, "template_id": template_id}

    created: list[dict] = []
    failures: list[ItemFailure] = []

    for item_id, item_title, item in pending:
        try:
            with db.session.begin_nested():
                draft = build_task_draft(deal_id, start_date, item)
                task = _as_task_dict(creator(draft, taxonomy))
                record_activity(
                    deal_id, actor_user_id, "created", "task", task.get("id") or 0,
                    details=f"Task created from template '{template_name}': {task.get('title')}",
                )
            created.append(task)
        except ValidationError as exc:
            failures.append(ItemFailure(item_id, item_title, str(exc),
                                        FAILURE_VALIDATION, exc.details))
            logger.warning("Template item %s rejected: %s", item_id, exc, extra=log_extra)
        except (TransportError, SQLAlchemyError) as exc:
            failures.append(ItemFailure(item_id, item_title, str(exc), FAILURE_TRANSPORT))
            logger.warning("Template item %s failed to persist: %s", item_id, exc, extra=log_extra)
        except Exception as exc:
            failures.append(ItemFailure(item_id, item_title, str(exc), FAILURE_UNEXPECTED))
            logger.exception("Template item %s failed unexpectedly", item_id, extra=log_extra)

    result = TemplateApplicationResult(
        deal_id=deal_id,
        template_id=template_id,
        created_tasks=tuple(created),
        failures=tuple(failures),
        skipped_item_ids=skipped,
    )

    record_activity(
        deal_id, actor_user_id, "applied", "deal", deal_id,
        details=f"Applied template '{template_name}': {result.summary}",
    )
    commit_or_raise("apply template")

    log = logger.info if result.is_complete else logger.warning
    log("Template %s applied to deal %s: %s (%d failed)",
        template_id, deal_id, result.summary, result.failed_count,
        extra={**log_extra, "created_count": result.created_count,
               "failed_count": result.failed_count})
    return result
