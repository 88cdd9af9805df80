"""
Task Grouping / Filtering Engine.

``group_tasks`` partitions a task collection for the list / kanban views.

View modes:
    phase | category   one group per known taxonomy value (built-ins in
                       canonical order, then customs), then one ad hoc group
                       per unknown raw value in first-seen order.
    owner              one group per known user (``str(user_id)``), then
                       ``"unassigned"``, then ad hoc groups for ids of
                       unknown users.
    date               a single group (``DATE_GROUP_KEY``) sorted by due date;
                       tasks without a due date always sort last.

Filters are conjunctive literal equality checks applied before grouping.
They never consult the taxonomy, so a task carrying a removed custom value
still matches a filter on that value. Empty groups are pruned.

The function is pure: tasks may be ORM objects or dicts, nothing is cached,
and the input sequence is not mutated.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from diligence.core.exceptions import ValidationError
from diligence.services.taxonomy_service import (
    CATEGORY,
    FILTER_ANY,
    PHASE,
    UNASSIGNED,
    TaxonomyStore,
)

VIEW_PHASE = "phase"
VIEW_CATEGORY = "category"
VIEW_OWNER = "owner"
VIEW_DATE = "date"
VIEW_MODES = (VIEW_PHASE, VIEW_CATEGORY, VIEW_OWNER, VIEW_DATE)

DATE_GROUP_KEY = "all"

SORT_ASC = "asc"
SORT_DESC = "desc"


def _field(task, name):
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def owner_key(assigned_to) -> str:
    """Group / filter key for an assignee id."""
    if assigned_to in (None, ""):
        return UNASSIGNED
    return str(assigned_to)


@dataclass(frozen=True)
class TaskFilters:
    """Optional equality constraints. ``None`` means "no constraint".

    ``owner`` accepts a user id (int or str) or ``"unassigned"``.
    """

    phase: str | None = None
    category: str | None = None
    owner: str | int | None = None
    status: str | None = None

    @classmethod
    def from_mapping(cls, args: Mapping) -> "TaskFilters":
        """Build from query args; empty strings and ``"all"`` mean no constraint."""

        def _get(key):
            value = args.get(key)
            if value in (None, "", FILTER_ANY):
                return None
            return value

        return cls(
            phase=_get("phase"),
            category=_get("category"),
            owner=_get("owner"),
            status=_get("status"),
        )

    def matches(self, task) -> bool:
        if self.phase is not None and _field(task, "phase") != self.phase:
            return False
        if self.category is not None and _field(task, "category") != self.category:
            return False
        if self.status is not None and _field(task, "status") != self.status:
            return False
        if self.owner is not None and owner_key(_field(task, "assigned_to")) != str(self.owner):
            return False
        return True


def filter_tasks(tasks: Iterable, filters: TaskFilters | None) -> list:
    if filters is None:
        return list(tasks)
    return [t for t in tasks if filters.matches(t)]


def _partition(tasks: list, key_of, seed_keys: Iterable[str]) -> dict[str, list]:
    groups: dict[str, list] = {key: [] for key in seed_keys}
    for task in tasks:
        key = key_of(task)
        groups.setdefault(key, []).append(task)
    return {key: members for key, members in groups.items() if members}


def _sort_by_due_date(tasks: list, sort_order: str) -> list:
    dated = [t for t in tasks if _field(t, "due_date") is not None]
    undated = [t for t in tasks if _field(t, "due_date") is None]
    dated.sort(key=lambda t: str(_field(t, "due_date")), reverse=(sort_order == SORT_DESC))
    return dated + undated


def group_tasks(
    tasks: Iterable,
    view_mode: str,
    filters: TaskFilters | None = None,
    *,
    taxonomy: TaxonomyStore,
    users: Iterable | None = None,
    sort_order: str = SORT_ASC,
) -> dict[str, list]:
    """Group *tasks* by *view_mode* after applying *filters*.

    Every task that passes the filters lands in exactly one group.

    Raises:
        ValidationError: unknown view mode or sort order.
    """
    if view_mode not in VIEW_MODES:
        raise ValidationError(
            f"Unknown view mode '{view_mode}'.",
            details={"view": f"Must be one of: {', '.join(VIEW_MODES)}"},
        )
    if sort_order not in (SORT_ASC, SORT_DESC):
        raise ValidationError(
            f"Unknown sort order '{sort_order}'.",
            details={"sort": "Must be asc or desc"},
        )

    selected = filter_tasks(tasks, filters)

    if view_mode == VIEW_DATE:
        ordered = _sort_by_due_date(selected, sort_order)
        return {DATE_GROUP_KEY: ordered} if ordered else {}

    if view_mode == VIEW_OWNER:
        seeds = [owner_key(_field(u, "id")) for u in (users or [])] + [UNASSIGNED]
        return _partition(selected, lambda t: owner_key(_field(t, "assigned_to")), seeds)

    namespace = PHASE if view_mode == VIEW_PHASE else CATEGORY
    return _partition(
        selected,
        lambda t: str(_field(t, view_mode) or ""),
        taxonomy.known_values(namespace),
    )


def describe_groups(groups: dict[str, list], view_mode: str, *,
                    taxonomy: TaxonomyStore, users: Iterable | None = None) -> list[dict]:
    """Presentation metadata (label, color, count) for each group key, in order."""
    names = {owner_key(_field(u, "id")): _field(u, "name") for u in (users or [])}
    described = []
    for key, members in groups.items():
        if view_mode in (VIEW_PHASE, VIEW_CATEGORY):
            namespace = PHASE if view_mode == VIEW_PHASE else CATEGORY
            label = taxonomy.display_label(namespace, key)
            color = taxonomy.color_class(namespace, key)
        elif view_mode == VIEW_OWNER:
            label = "Unassigned" if key == UNASSIGNED else (names.get(key) or f"User {key}")
            color = None
        else:
            label, color = "All tasks", None
        described.append({"key": key, "label": label, "color": color, "count": len(members)})
    return described
