"""
Tests — Task Grouping / Filtering Engine.

Pure-function tests over plain dicts plus one ORM smoke test.
"""

from datetime import date

import pytest

from diligence.core.exceptions import ValidationError
from diligence.services.task_grouping import (
    DATE_GROUP_KEY,
    UNASSIGNED,
    TaskFilters,
    describe_groups,
    filter_tasks,
    group_tasks,
)
from diligence.services.taxonomy_service import InMemoryTaxonomyBackend, TaxonomyStore


@pytest.fixture()
def store():
    return TaxonomyStore(InMemoryTaxonomyBackend({"phase": ["integration_planning"]})).load()


def _task(task_id, phase="loi_signing", category="legal", status="not_started",
          assigned_to=None, due_date=None):
    return {
        "id": task_id, "title": f"Task {task_id}", "phase": phase, "category": category,
        "status": status, "assigned_to": assigned_to, "due_date": due_date,
    }


def _ids(groups):
    return {key: [t["id"] for t in members] for key, members in groups.items()}


TASKS = [
    _task(1, phase="loi_signing", category="legal", assigned_to=7, due_date=date(2024, 1, 10)),
    _task(2, phase="document_review", category="financial", due_date=date(2024, 1, 5)),
    _task(3, phase="document_review", category="legal", status="completed", assigned_to=7),
    _task(4, phase="integration_planning", category="hr", assigned_to=8,
          due_date=date(2024, 2, 1)),
    _task(5, phase="retired_phase", category="legal", due_date=date(2024, 1, 5)),
]


# ── Partition ────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("view", ["phase", "category", "owner", "date"])
def test_every_task_lands_in_exactly_one_group(view, store):
    groups = group_tasks(TASKS, view, taxonomy=store, users=[{"id": 7, "name": "Ann"}])

    placed = [t["id"] for members in groups.values() for t in members]
    assert sorted(placed) == [1, 2, 3, 4, 5]


def test_phase_groups_follow_canonical_then_custom_then_ad_hoc_order(store):
    groups = group_tasks(TASKS, "phase", taxonomy=store)

    assert list(groups) == ["loi_signing", "document_review", "integration_planning", "retired_phase"]
    assert _ids(groups)["document_review"] == [2, 3]


def test_empty_groups_are_pruned(store):
    groups = group_tasks(TASKS, "category", taxonomy=store)

    assert all(groups.values())
    assert "tax" not in groups


def test_ad_hoc_group_for_removed_custom_value(store):
    store.remove_custom_value("phase", "integration_planning")

    groups = group_tasks(TASKS, "phase", taxonomy=store)

    assert list(groups)[-2:] == ["integration_planning", "retired_phase"]
    assert _ids(groups)["integration_planning"] == [4]


def test_owner_view_uses_user_ids_and_unassigned(store):
    users = [{"id": 8, "name": "Ben"}, {"id": 7, "name": "Ann"}]

    groups = group_tasks(TASKS, "owner", taxonomy=store, users=users)

    assert list(groups) == ["8", "7", UNASSIGNED]
    assert _ids(groups) == {"8": [4], "7": [1, 3], UNASSIGNED: [2, 5]}


def test_owner_view_keeps_tasks_of_unknown_users(store):
    groups = group_tasks(TASKS, "owner", taxonomy=store, users=[])

    assert list(groups) == [UNASSIGNED, "7", "8"]


def test_date_view_sorts_ascending_with_undated_last(store):
    groups = group_tasks(TASKS, "date", taxonomy=store)

    assert list(groups) == [DATE_GROUP_KEY]
    ordered = [t["id"] for t in groups[DATE_GROUP_KEY]]
    assert ordered[:2] in ([2, 5], [5, 2])
    assert ordered[2:] == [1, 4, 3]


def test_date_view_descending_still_puts_undated_last(store):
    groups = group_tasks(TASKS, "date", taxonomy=store, sort_order="desc")

    ordered = [t["id"] for t in groups[DATE_GROUP_KEY]]
    assert ordered[0] == 4
    assert ordered[-1] == 3


def test_date_view_with_nothing_selected_is_empty(store):
    assert group_tasks([], "date", taxonomy=store) == {}


# ── Filters ──────────────────────────────────────────────────────────────────


def test_filters_are_conjunctive(store):
    filters = TaskFilters(phase="document_review", category="legal")

    groups = group_tasks(TASKS, "phase", filters, taxonomy=store)

    assert _ids(groups) == {"document_review": [3]}


def test_filtered_grouping_equals_grouping_of_filtered_set(store):
    filters = TaskFilters(category="legal")

    direct = group_tasks(TASKS, "owner", filters, taxonomy=store)
    prefiltered = group_tasks(filter_tasks(TASKS, filters), "owner", taxonomy=store)

    assert _ids(direct) == _ids(prefiltered)


def test_owner_filter_accepts_int_str_and_unassigned():
    assert [t["id"] for t in filter_tasks(TASKS, TaskFilters(owner=7))] == [1, 3]
    assert [t["id"] for t in filter_tasks(TASKS, TaskFilters(owner="7"))] == [1, 3]
    assert [t["id"] for t in filter_tasks(TASKS, TaskFilters(owner=UNASSIGNED))] == [2, 5]


def test_filter_on_value_missing_from_taxonomy_still_matches():
    assert [t["id"] for t in filter_tasks(TASKS, TaskFilters(phase="retired_phase"))] == [5]


def test_status_filter():
    assert [t["id"] for t in filter_tasks(TASKS, TaskFilters(status="completed"))] == [3]


def test_filters_from_query_args_treat_all_and_empty_as_unset():
    filters = TaskFilters.from_mapping({"phase": "all", "category": "", "owner": "7"})

    assert filters == TaskFilters(owner="7")


def test_grouping_does_not_mutate_input(store):
    tasks = list(TASKS)
    snapshot = [dict(t) for t in tasks]

    group_tasks(tasks, "date", TaskFilters(category="legal"), taxonomy=store, sort_order="desc")

    assert tasks == snapshot


# ── Errors / presentation ────────────────────────────────────────────────────


def test_unknown_view_mode_is_rejected(store):
    with pytest.raises(ValidationError):
        group_tasks(TASKS, "kanban", taxonomy=store)


def test_unknown_sort_order_is_rejected(store):
    with pytest.raises(ValidationError):
        group_tasks(TASKS, "date", taxonomy=store, sort_order="sideways")


def test_describe_groups_labels_and_counts(store):
    users = [{"id": 7, "name": "Ann"}]
    groups = group_tasks(TASKS, "owner", taxonomy=store, users=users)

    meta = describe_groups(groups, "owner", taxonomy=store, users=users)

    assert meta[0] == {"key": "7", "label": "Ann", "color": None, "count": 2}
    assert meta[1]["label"] == "Unassigned"
    assert meta[2]["label"] == "User 8"


def test_describe_groups_for_phase_view_uses_taxonomy_labels(store):
    groups = group_tasks(TASKS, "phase", taxonomy=store)

    meta = {m["key"]: m for m in describe_groups(groups, "phase", taxonomy=store)}

    assert meta["integration_planning"]["label"] == "Integration Planning"
    assert meta["retired_phase"]["label"] == "Retired Phase"
    assert meta["loi_signing"]["count"] == 1


def test_groups_orm_tasks(deal, make_template, taxonomy):
    from diligence.services.task_service import list_tasks
    from diligence.services.template_application import apply_template

    template = make_template(items=[
        {"title": "A", "days_from_start": 5},
        {"title": "B", "days_from_start": 1, "category": "financial"},
    ])
    apply_template(deal.id, template.id, taxonomy=taxonomy)

    groups = group_tasks(list_tasks(deal.id), "date", taxonomy=taxonomy)

    assert [t.title for t in groups[DATE_GROUP_KEY]] == ["B", "A"]


def test_filter_on_removed_custom_phase_still_returns_task(deal, taxonomy):
    from diligence.services.task_service import create_task, list_tasks

    taxonomy.add_custom_value("phase", "integration_planning")
    create_task({"deal_id": deal.id, "title": "Day-one plan", "phase": "integration_planning",
                 "category": "operating_team"}, taxonomy=taxonomy)
    create_task({"deal_id": deal.id, "title": "Other", "phase": "loi_signing",
                 "category": "legal"}, taxonomy=taxonomy)
    taxonomy.remove_custom_value("phase", "integration_planning")

    selected = filter_tasks(list_tasks(deal.id), TaskFilters(phase="integration_planning"))
    groups = group_tasks(list_tasks(deal.id), "phase", TaskFilters(phase="integration_planning"),
                         taxonomy=taxonomy)

    assert [t.title for t in selected] == ["Day-one plan"]
    assert list(groups) == ["integration_planning"]


def test_every_stored_custom_value_is_filterable_from_query_args(store):
    with pytest.raises(ValidationError):
        store.add_custom_value("phase", "all")
    token = store.add_custom_value("phase", "Carve Out")
    tasks = [_task(1, phase="loi_signing"), _task(2, phase=token)]

    for value in store.known_values("phase"):
        assert TaskFilters.from_mapping({"phase": value}).phase == value
    groups = group_tasks(tasks, "phase", TaskFilters.from_mapping({"phase": token}),
                         taxonomy=store)

    assert _ids(groups) == {"carve_out": [2]}
