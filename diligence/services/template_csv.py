"""
Template CSV import.

CSV columns: title, description, phase, category, daysFromStart, assignedTo

Row policy:
  - Blank rows and rows without a title are skipped (reported, not fatal).
  - phase / category are matched against the taxonomy: exact token, then
    case-insensitive token, then token with ``_`` read as spaces, then
    display label. Unmatched values fall back to ``loi_signing`` / ``legal``
    and produce a warning.
  - daysFromStart is read up to its first non-digit ("7 days" is 7) and is
    0 when no leading integer exists; out-of-range offsets are clamped
    to 0..TEMPLATE_MAX_DAY_OFFSET.
  - assignedTo is a user id; unknown or non-numeric ids are dropped.

The template and all its items are written in one transaction.
"""

import csv
import io
import logging
import re

from diligence.core.exceptions import ValidationError
from diligence.models import db
from diligence.models.activity import record_activity
from diligence.models.template import TaskTemplate, TaskTemplateItem
from diligence.models.user import User
from diligence.services.taxonomy_service import (
    CATEGORY,
    PHASE,
    TaxonomyStore,
    display_label,
    get_taxonomy_store,
)
from diligence.services.template_service import (
    clean_template_name,
    max_day_offset,
    unset_other_defaults,
)
from diligence.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["title", "description", "phase", "category", "daysFromStart", "assignedTo"]

FALLBACK_VALUES = {
    PHASE: "loi_signing",
    CATEGORY: "legal",
}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

CSV_SAMPLE_ROWS = [
    ["Sign LOI and kick off diligence", "Countersign LOI, circulate kickoff memo",
     "loi_signing", "legal", "0", ""],
    ["Send initial information request list", "Standard IRL to seller / broker",
     "planning_initial", "seller_broker", "3", ""],
    ["Review quality of earnings report", "",
     "document_review", "financial", "21", ""],
    ["Mid-phase review with investment committee", "",
     "mid_phase_review", "investment_committee", "45", ""],
    ["Finalize purchase agreement", "Negotiate reps, warranties and indemnities",
     "final_risk_review", "legal", "75", ""],
]


def generate_csv_sample() -> str:
    """Sample CSV content showing the expected columns."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    writer.writerows(CSV_SAMPLE_ROWS)
    return output.getvalue()


# ── Normalisation ────────────────────────────────────────────────────────────


def normalize_taxonomy_value(namespace: str, raw: str, taxonomy: TaxonomyStore) -> tuple[str, bool]:
    """Map a free-text CSV cell onto a known token.

    Returns ``(token, matched)``; ``matched`` is False when the namespace
    fallback was used.
    """
    text = (raw or "").strip()
    known = taxonomy.known_values(namespace)
    if text in known:
        return text, True
    lowered = text.lower()
    for value in known:
        if value.lower() == lowered:
            return value, True
    for value in known:
        if value.replace("_", " ").lower() == lowered:
            return value, True
    for value in known:
        if display_label(namespace, value).lower() == lowered:
            return value, True
    return FALLBACK_VALUES[namespace], False


def _parse_offset(raw: str, upper: int) -> int:
    """Leading integer of the cell ("7 days" is 7, "5.0" is 5), clamped to 0..upper."""
    match = _LEADING_INT.match(str(raw or ""))
    if not match:
        return 0
    return min(max(int(match.group(1)), 0), upper)


def _parse_assignee(raw: str) -> int | None:
    text = (raw or "").strip()
    if not text:
        return None
    try:
        user_id = int(text)
    except ValueError:
        return None
    return user_id if db.session.get(User, user_id) else None


def parse_template_csv(csv_content: str | bytes, taxonomy: TaxonomyStore) -> dict:
    """Parse CSV content into item dicts.

    Returns ``{"items": [...], "skipped": [...], "warnings": [...]}``.

    Raises:
        ValidationError: not UTF-8, malformed, or no ``title`` column.
    """
    if isinstance(csv_content, bytes):
        try:
            csv_content = csv_content.decode("utf-8-sig")  # Handle BOM
        except UnicodeDecodeError:
            raise ValidationError(
                "CSV file is not valid UTF-8.", details={"csv": "not valid UTF-8 CSV"}
            ) from None
    if not (csv_content or "").strip():
        raise ValidationError("CSV content is empty.", details={"csv": "required"})

    reader = csv.DictReader(io.StringIO(csv_content))
    try:
        fieldnames = [f.strip() for f in (reader.fieldnames or [])]
        rows = list(reader)
    except csv.Error as exc:
        raise ValidationError(f"Malformed CSV: {exc}", details={"csv": "malformed CSV"}) from None
    if "title" not in fieldnames:
        raise ValidationError(
            "CSV must have a 'title' column. "
            f"Found columns: {', '.join(fieldnames)}",
            details={"csv": "missing title column"},
        )

    upper = max_day_offset()
    items: list[dict] = []
    skipped: list[dict] = []
    warnings: list[str] = []

    for row_num, row in enumerate(rows, start=2):  # header is row 1
        cells = {(k or "").strip(): (v or "").strip() for k, v in row.items() if k is not None}
        if not any(cells.values()):
            continue
        if not cells.get("title"):
            skipped.append({"row_num": row_num, "reason": "missing title"})
            continue

        phase, phase_ok = normalize_taxonomy_value(PHASE, cells.get("phase", ""), taxonomy)
        category, category_ok = normalize_taxonomy_value(CATEGORY, cells.get("category", ""), taxonomy)
        if not phase_ok:
            warnings.append(f"Row {row_num}: invalid phase '{cells.get('phase', '')}', using '{phase}'")
        if not category_ok:
            warnings.append(
                f"Row {row_num}: invalid category '{cells.get('category', '')}', using '{category}'"
            )

        items.append({
            "title": cells["title"][:300],
            "description": cells.get("description") or None,
            "phase": phase,
            "category": category,
            "days_from_start": _parse_offset(cells.get("daysFromStart", ""), upper),
            "assigned_to": _parse_assignee(cells.get("assignedTo", "")),
        })

    for message in warnings:
        logger.warning("CSV import: %s", message)
    return {"items": items, "skipped": skipped, "warnings": warnings}


def import_template_from_csv(
    name: str,
    description: str | None,
    csv_content: str | bytes,
    *,
    created_by: int | None = None,
    is_default: bool = False,
    taxonomy: TaxonomyStore | None = None,
) -> dict:
    """Create a template from CSV content.

    Raises:
        ValidationError: bad name, unreadable CSV, or no usable rows.
    """
    name = clean_template_name(name)
    taxonomy = taxonomy or get_taxonomy_store()
    parsed = parse_template_csv(csv_content, taxonomy)
    if not parsed["items"]:
        raise ValidationError("CSV contains no task rows.", details={"csv": "no rows"})

    if is_default:
        unset_other_defaults(keep_id=None)
    template = TaskTemplate(
        name=name,
        description=description or None,
        is_default=bool(is_default),
        created_by=created_by,
    )
    template.items = [TaskTemplateItem(**item) for item in parsed["items"]]
    db.session.add(template)
    db.session.flush()

    record_activity(
        None, created_by, "imported", "task_template", template.id,
        details=f"Imported template from CSV: {template.name} with {len(parsed['items'])} tasks",
    )
    commit_or_raise("import template CSV")
    logger.info("Template imported from CSV id=%s items=%d skipped=%d",
                template.id, len(parsed["items"]), len(parsed["skipped"]),
                extra={"template_id": template.id})
    return {
        "template": template.to_dict(include_items=True),
        "item_count": len(parsed["items"]),
        "skipped": parsed["skipped"],
        "warnings": parsed["warnings"],
        "affects": ["task_templates", f"task_template:{template.id}:items"],
    }
