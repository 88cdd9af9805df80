"""
Template Repository — reusable task checklists.

Business context:
    A TaskTemplate is a named list of TaskTemplateItems. Items carry a
    relative ``days_from_start`` offset that only becomes a concrete due date
    when the template is applied to a deal (see ``template_application``).

    Phase and category of an item are validated against the TaxonomyStore
    at authoring time; template application copies them verbatim.

    At most one template is flagged ``is_default``: flagging a template
    clears the flag on every other template. The selector falls back to the
    default template when the user picks none.

Transaction policy:
    Every public mutation commits exactly once via ``commit_or_raise``.
"""

import logging

from flask import current_app
from sqlalchemy import select, update

from diligence.core.exceptions import NotFoundError, ValidationError
from diligence.models import db
from diligence.models.activity import record_activity
from diligence.models.template import MAX_DAY_OFFSET, TaskTemplate, TaskTemplateItem
from diligence.models.user import User
from diligence.services.taxonomy_service import (
    CATEGORY,
    PHASE,
    TaxonomyStore,
    get_taxonomy_store,
)
from diligence.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
MAX_ITEM_TITLE_LENGTH = 300


def _template_affects(template_id: int) -> list[str]:
    return ["task_templates", f"task_template:{template_id}:items"]


def max_day_offset() -> int:
    return int(current_app.config.get("TEMPLATE_MAX_DAY_OFFSET", MAX_DAY_OFFSET))


# ── Lookups ──────────────────────────────────────────────────────────────────


def _get_template(template_id) -> TaskTemplate:
    template = db.session.get(TaskTemplate, template_id)
    if not template:
        raise NotFoundError(resource="TaskTemplate", resource_id=template_id)
    return template


def _get_item(item_id) -> TaskTemplateItem:
    item = db.session.get(TaskTemplateItem, item_id)
    if not item:
        raise NotFoundError(resource="TaskTemplateItem", resource_id=item_id)
    return item


def get_template_model(template_id: int) -> TaskTemplate:
    """ORM lookup for collaborators (template application)."""
    return _get_template(template_id)


# ── Validation ───────────────────────────────────────────────────────────────


def clean_template_name(value) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError("Template name is required.", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Template name must be ≤ {MAX_NAME_LENGTH} characters.",
            details={"name": "too long"},
        )
    return name


def validate_day_offset(value) -> int:
    """Coerce and range-check an item offset (0 .. TEMPLATE_MAX_DAY_OFFSET)."""
    upper = max_day_offset()
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("Day offset must be an integer.",
                              details={"days_from_start": "integer required"})
    try:
        offset = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Day offset must be an integer.",
                              details={"days_from_start": "integer required"}) from None
    if isinstance(value, float) and value != offset:
        raise ValidationError("Day offset must be a whole number of days.",
                              details={"days_from_start": "integer required"})
    if not 0 <= offset <= upper:
        raise ValidationError(f"Day offset must be between 0 and {upper}.",
                              details={"days_from_start": f"0..{upper}"})
    return offset


def _check_user(user_id):
    if user_id in (None, ""):
        return None
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError("assigned_to must be a user id.",
                              details={"assigned_to": "invalid"}) from None
    if not db.session.get(User, user_id):
        raise NotFoundError(resource="User", resource_id=user_id)
    return user_id


def validate_item_fields(data: dict, taxonomy: TaxonomyStore, *, partial: bool = False) -> dict:
    """Return the cleaned subset of item fields present in *data*.

    With ``partial=False`` title, phase and category are required.
    """
    cleaned: dict = {}
    errors: dict = {}

    if "title" in data or not partial:
        title = str(data.get("title") or "").strip()
        if not title:
            errors["title"] = "required"
        elif len(title) > MAX_ITEM_TITLE_LENGTH:
            errors["title"] = "too long"
        else:
            cleaned["title"] = title

    if "description" in data:
        cleaned["description"] = data.get("description") or None

    for field, namespace in (("phase", PHASE), ("category", CATEGORY)):
        if field not in data and partial:
            continue
        token = str(data.get(field) or "").strip()
        if not token:
            errors[field] = "required"
        elif not taxonomy.is_known(namespace, token):
            errors[field] = f"unknown {namespace} value"
        else:
            cleaned[field] = token

    if errors:
        raise ValidationError("Invalid template item.", details=errors)

    if "days_from_start" in data or not partial:
        cleaned["days_from_start"] = validate_day_offset(data.get("days_from_start"))
    if "assigned_to" in data:
        cleaned["assigned_to"] = _check_user(data.get("assigned_to"))
    return cleaned


def unset_other_defaults(keep_id: int | None) -> None:
    stmt = update(TaskTemplate).where(TaskTemplate.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(TaskTemplate.id != keep_id)
    db.session.execute(stmt.values(is_default=False))


# ═════════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════════


def list_templates() -> list[dict]:
    stmt = select(TaskTemplate).order_by(TaskTemplate.is_default.desc(), TaskTemplate.name)
    return [t.to_dict() for t in db.session.execute(stmt).scalars().all()]


def get_template(template_id: int, include_items: bool = True) -> dict:
    return _get_template(template_id).to_dict(include_items=include_items)


def get_default_template() -> dict:
    """The template flagged default (lowest id wins if data is inconsistent)."""
    stmt = (
        select(TaskTemplate)
        .where(TaskTemplate.is_default.is_(True))
        .order_by(TaskTemplate.id)
        .limit(1)
    )
    template = db.session.execute(stmt).scalar_one_or_none()
    if not template:
        raise NotFoundError(resource="Default TaskTemplate")
    return template.to_dict(include_items=True)


def create_template(data: dict, *, taxonomy: TaxonomyStore | None = None,
                    actor_user_id: int | None = None) -> dict:
    """Create a template, optionally with an inline ``items`` list.

    All items are validated before anything is written.
    """
    name = clean_template_name(data.get("name"))
    is_default = bool(data.get("is_default", False))
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list.", details={"items": "list required"})

    items: list[dict] = []
    if raw_items:
        taxonomy = taxonomy or get_taxonomy_store()
        for idx, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(
                    f"Item {idx + 1} must be an object.",
                    details={f"items[{idx}]": "object required"},
                )
            try:
                items.append(validate_item_fields(raw, taxonomy))
            except ValidationError as exc:
                raise ValidationError(
                    f"Item {idx + 1}: {exc}", details={f"items[{idx}]": exc.details}
                ) from None

    if is_default:
        unset_other_defaults(keep_id=None)

    template = TaskTemplate(
        name=name,
        description=data.get("description") or None,
        is_default=is_default,
        created_by=actor_user_id,
    )
    template.items = [TaskTemplateItem(**fields) for fields in items]
    db.session.add(template)
    db.session.flush()

    record_activity(None, actor_user_id, "created", "task_template", template.id,
                    details=f"Created task template: {template.name}")
    commit_or_raise("create template")
    logger.info("Template created id=%s name=%s items=%d default=%s",
                template.id, template.name, len(items), is_default,
                extra={"template_id": template.id})
    result = template.to_dict(include_items=True)
    result["affects"] = _template_affects(template.id)
    return result


def update_template(template_id: int, data: dict, *, actor_user_id: int | None = None) -> dict:
    template = _get_template(template_id)

    name = clean_template_name(data["name"]) if "name" in data else None
    if name is not None:
        template.name = name
    if "description" in data:
        template.description = data["description"] or None
    if "is_default" in data:
        flag = bool(data["is_default"])
        if flag:
            unset_other_defaults(keep_id=template.id)
        template.is_default = flag

    record_activity(None, actor_user_id, "updated", "task_template", template.id,
                    details=f"Updated task template: {template.name}")
    commit_or_raise("update template")
    logger.info("Template updated id=%s", template.id, extra={"template_id": template.id})
    result = template.to_dict(include_items=True)
    result["affects"] = _template_affects(template.id)
    return result


def delete_template(template_id: int, *, actor_user_id: int | None = None) -> list[str]:
    """Delete a template together with all of its items."""
    template = _get_template(template_id)
    name, item_count = template.name, len(template.items)
    db.session.delete(template)
    record_activity(None, actor_user_id, "deleted", "task_template", template_id,
                    details=f"Deleted task template: {name} ({item_count} items)")
    commit_or_raise("delete template")
    logger.info("Template deleted id=%s items=%d", template_id, item_count,
                extra={"template_id": template_id})
    return _template_affects(template_id)


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════


def list_items(template_id: int) -> list[dict]:
    template = _get_template(template_id)
    return [i.to_dict() for i in template.items]


def add_item(template_id: int, data: dict, *, taxonomy: TaxonomyStore | None = None,
             actor_user_id: int | None = None) -> dict:
    template = _get_template(template_id)
    fields = validate_item_fields(data, taxonomy or get_taxonomy_store())
    item = TaskTemplateItem(template_id=template.id, **fields)
    db.session.add(item)
    db.session.flush()
    record_activity(None, actor_user_id, "created", "task_template_item", item.id,
                    details=f"Added item '{item.title}' to template {template.name}")
    commit_or_raise("add template item")
    logger.info("Template item added id=%s template=%s", item.id, template.id,
                extra={"template_id": template.id})
    result = item.to_dict()
    result["affects"] = _template_affects(template.id)
    return result


def update_item(item_id: int, data: dict, *, taxonomy: TaxonomyStore | None = None,
                actor_user_id: int | None = None) -> dict:
    item = _get_item(item_id)
    # An unchanged phase/category is accepted even if it left the taxonomy.
    data = {k: v for k, v in data.items()
            if not (k in ("phase", "category") and v == getattr(item, k))}
    fields = validate_item_fields(data, taxonomy or get_taxonomy_store(), partial=True)
    for key, value in fields.items():
        setattr(item, key, value)
    record_activity(None, actor_user_id, "updated", "task_template_item", item.id,
                    details=f"Updated template item '{item.title}'")
    commit_or_raise("update template item")
    result = item.to_dict()
    result["affects"] = _template_affects(item.template_id)
    return result


def delete_item(item_id: int, *, actor_user_id: int | None = None) -> list[str]:
    item = _get_item(item_id)
    template_id, title = item.template_id, item.title
    db.session.delete(item)
    record_activity(None, actor_user_id, "deleted", "task_template_item", item_id,
                    details=f"Deleted template item '{title}'")
    commit_or_raise("delete template item")
    return _template_affects(template_id)
