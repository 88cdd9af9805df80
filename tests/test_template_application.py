"""
Tests — Template Application Engine.

Covers:
    - empty template is a no-op success
    - due dates from deal start + item offset; no start date → no due date
    - partial failure never aborts the remaining items
    - transport failures (injected creator, FK violation) become item failures
    - skip_item_ids resubmission and non-idempotent re-application
    - activity trail entries
"""

from datetime import date

import pytest
from sqlalchemy import select

from diligence.core.exceptions import NotFoundError, TransportError
from diligence.models import db as _db
from diligence.models.activity import ActivityLog
from diligence.models.deal import Task
from diligence.services.task_service import persist_task
from diligence.services.template_application import (
    FAILURE_TRANSPORT,
    FAILURE_VALIDATION,
    ItemFailure,
    TemplateApplicationResult,
    apply_template,
)


def _deal_tasks(deal_id):
    stmt = select(Task).where(Task.deal_id == deal_id).order_by(Task.id)
    return list(_db.session.execute(stmt).scalars().all())


# ── Basic behaviour ──────────────────────────────────────────────────────────


def test_empty_template_is_a_noop_success(deal, make_template, taxonomy):
    template = make_template(items=())

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.created_tasks == ()
    assert result.failures == ()
    assert result.is_complete
    assert result.summary == "Created 0 of 0 tasks"
    assert _deal_tasks(deal.id) == []


def test_offsets_resolve_to_due_dates(deal, make_template, taxonomy):
    template = make_template(items=[
        {"title": "Kickoff", "days_from_start": 0},
        {"title": "Request list", "days_from_start": 7, "phase": "planning_initial"},
        {"title": "QoE review", "days_from_start": 30, "category": "financial"},
    ])

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.failed_count == 0
    assert result.created_count == 3
    assert sorted(t["due_date"] for t in result.created_tasks) == [
        "2024-01-01", "2024-01-08", "2024-01-31",
    ]
    persisted = _deal_tasks(deal.id)
    assert sorted(t.due_date for t in persisted) == [
        date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 31),
    ]


def test_drafts_copy_item_fields_and_start_not_started(deal, make_template, user, taxonomy):
    template = make_template(items=[{
        "title": "Legal DD", "description": "Full legal review",
        "phase": "document_review", "category": "legal",
        "days_from_start": 14, "assigned_to": user.id,
    }])

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    (task,) = result.created_tasks
    assert task["title"] == "Legal DD"
    assert task["description"] == "Full legal review"
    assert task["phase"] == "document_review"
    assert task["category"] == "legal"
    assert task["status"] == "not_started"
    assert task["completed_at"] is None
    assert task["assigned_to"] == user.id
    assert task["deal_id"] == deal.id


def test_deal_without_start_date_yields_tasks_without_due_date(undated_deal, make_template, taxonomy):
    template = make_template(items=[{"title": "Site visit", "days_from_start": 10}])

    result = apply_template(undated_deal.id, template.id, taxonomy=taxonomy)

    assert result.failed_count == 0
    (task,) = result.created_tasks
    assert task["due_date"] is None
    assert _deal_tasks(undated_deal.id)[0].due_date is None


# ── Partial failure ──────────────────────────────────────────────────────────


def test_invalid_item_does_not_abort_remaining_items(deal, make_template, taxonomy):
    template = make_template(items=[
        {"title": "First"},
        {"title": "Broken", "phase": "not_a_phase"},
        {"title": "Third"},
        {"title": "Fourth"},
    ])
    broken_id = template.items[1].id

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.created_count + result.failed_count == 4
    assert result.created_count == 3
    assert not result.is_complete
    (failure,) = result.failures
    assert failure.item_id == broken_id
    assert failure.kind == FAILURE_VALIDATION
    assert "not_a_phase" in failure.reason
    assert result.summary == "Created 3 of 4 tasks"
    assert sorted(t.title for t in _deal_tasks(deal.id)) == ["First", "Fourth", "Third"]


def test_empty_title_and_negative_offset_are_item_failures(deal, make_template, taxonomy):
    template = make_template(items=[
        {"title": "   "},
        {"title": "Negative", "days_from_start": -3},
        {"title": "Good"},
    ])

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.created_count == 1
    assert {f.kind for f in result.failures} == {FAILURE_VALIDATION}
    assert len(result.failures) == 2


def test_persistence_failure_is_isolated_to_its_item(deal, make_template, user, taxonomy):
    template = make_template(items=[
        {"title": "Assigned", "assigned_to": user.id},
        {"title": "Ghost owner"},
        {"title": "Unassigned"},
    ])

    def ghost_assignee(draft, store):
        # Unknown user id: the foreign key check fails on flush.
        if draft["title"] == "Ghost owner":
            draft = dict(draft, assigned_to=user.id + 999)
        return persist_task(draft, store)

    result = apply_template(deal.id, template.id, taxonomy=taxonomy, task_creator=ghost_assignee)

    assert result.created_count == 2
    (failure,) = result.failures
    assert failure.title == "Ghost owner"
    assert failure.kind == FAILURE_TRANSPORT
    assert sorted(t.title for t in _deal_tasks(deal.id)) == ["Assigned", "Unassigned"]


def test_transport_error_from_creator_is_reported_not_retried(deal, make_template, taxonomy):
    template = make_template(items=[{"title": "A"}, {"title": "B"}, {"title": "C"}])
    calls = []

    def flaky_creator(draft, store):
        calls.append(draft["title"])
        if draft["title"] == "B":
            raise TransportError("upstream rejected create")
        return persist_task(draft, store)

    result = apply_template(deal.id, template.id, taxonomy=taxonomy, task_creator=flaky_creator)

    assert calls == ["A", "B", "C"]
    assert result.created_count == 2
    (failure,) = result.failures
    assert failure.reason == "upstream rejected create"
    assert failure.kind == FAILURE_TRANSPORT


def test_every_item_failing_still_returns_a_result(deal, make_template, taxonomy):
    template = make_template(items=[{"title": "X", "category": "nope"},
                                    {"title": "Y", "category": "nope"}])

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.created_count == 0
    assert result.failed_count == 2
    assert result.summary == "Created 0 of 2 tasks"
    assert _deal_tasks(deal.id) == []


# ── Custom taxonomy values ───────────────────────────────────────────────────


def test_items_with_custom_values_are_applied(deal, make_template, taxonomy):
    taxonomy.add_custom_value("phase", "integration_planning")
    template = make_template(items=[{"title": "100-day plan", "phase": "integration_planning"}])

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.is_complete
    assert result.created_tasks[0]["phase"] == "integration_planning"


def test_item_with_removed_custom_value_fails_alone(deal, make_template, taxonomy):
    taxonomy.add_custom_value("category", "insurance")
    template = make_template(items=[{"title": "Policy review", "category": "insurance"},
                                    {"title": "Lease review"}])
    taxonomy.remove_custom_value("category", "insurance")

    result = apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert result.created_count == 1
    assert result.failures[0].title == "Policy review"


# ── Re-application / resubmission ────────────────────────────────────────────


def test_reapplying_template_creates_duplicates(deal, make_template, taxonomy):
    template = make_template(items=[{"title": "Kickoff"}, {"title": "IRL"}])

    apply_template(deal.id, template.id, taxonomy=taxonomy)
    apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert len(_deal_tasks(deal.id)) == 4


def test_skip_item_ids_resubmits_only_the_failed_subset(deal, make_template, taxonomy):
    template = make_template(items=[{"title": "Ok"}, {"title": "Needs phase", "phase": "custom_x"}])
    first = apply_template(deal.id, template.id, taxonomy=taxonomy)
    succeeded = [i.id for i in template.items if i.id not in {f.item_id for f in first.failures}]

    taxonomy.add_custom_value("phase", "custom_x")
    second = apply_template(deal.id, template.id, taxonomy=taxonomy, skip_item_ids=succeeded)

    assert second.is_complete
    assert second.created_count == 1
    assert second.skipped_item_ids == tuple(succeeded)
    assert sorted(t.title for t in _deal_tasks(deal.id)) == ["Needs phase", "Ok"]


# ── Errors & side effects ────────────────────────────────────────────────────


def test_missing_deal_raises_not_found(make_template, taxonomy):
    template = make_template(items=[{"title": "A"}])
    with pytest.raises(NotFoundError):
        apply_template(9999, template.id, taxonomy=taxonomy)


def test_missing_template_raises_not_found(deal, taxonomy):
    with pytest.raises(NotFoundError):
        apply_template(deal.id, 9999, taxonomy=taxonomy)


def _failing_commit(context="commit"):
    _db.session.rollback()
    raise TransportError(f"Database error during {context}")


def test_failed_final_commit_raises_and_persists_nothing(deal, make_template, taxonomy,
                                                         monkeypatch):
    template = make_template(items=[{"title": "A"}, {"title": "B"}])
    monkeypatch.setattr("diligence.services.template_application.commit_or_raise",
                        _failing_commit)

    with pytest.raises(TransportError, match="apply template"):
        apply_template(deal.id, template.id, taxonomy=taxonomy)

    assert _deal_tasks(deal.id) == []
    assert _db.session.execute(select(ActivityLog)).scalars().all() == []


def test_activity_trail_records_each_task_and_the_batch(deal, make_template, user, taxonomy):
    template = make_template(name="Lean DD", items=[{"title": "A"}, {"title": "B"}])

    apply_template(deal.id, template.id, actor_user_id=user.id, taxonomy=taxonomy)

    logs = _db.session.execute(
        select(ActivityLog).where(ActivityLog.deal_id == deal.id).order_by(ActivityLog.id)
    ).scalars().all()
    assert [(log.action, log.entity_type) for log in logs] == [
        ("created", "task"), ("created", "task"), ("applied", "deal"),
    ]
    assert "Lean DD" in logs[0].details
    assert logs[-1].details.endswith("Created 2 of 2 tasks")
    assert all(log.user_id == user.id for log in logs)


def test_result_to_dict_exposes_counts_and_affects(deal, make_template, taxonomy):
    template = make_template(items=[{"title": "A"}, {"title": "B", "phase": "bogus"}])

    payload = apply_template(deal.id, template.id, taxonomy=taxonomy).to_dict()

    assert payload["total"] == 2
    assert payload["created_count"] == 1
    assert payload["failed_count"] == 1
    assert payload["is_complete"] is False
    assert payload["summary"] == "Created 1 of 2 tasks"
    assert payload["affects"] == [f"deal:{deal.id}:tasks", f"deal:{deal.id}:activity"]
    assert payload["failures"][0]["title"] == "B"


def test_result_type_is_immutable():
    result = TemplateApplicationResult(deal_id=1, template_id=2,
                                       failures=(ItemFailure(3, "t", "boom"),))
    with pytest.raises(AttributeError):
        result.deal_id = 5
    assert result.total == 1
    assert result.summary == "Created 0 of 1 tasks"
