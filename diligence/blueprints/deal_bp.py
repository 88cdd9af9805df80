"""
Deal blueprint.

Endpoints:
    GET/POST   /api/v1/deals
    GET/PATCH  /api/v1/deals/<deal_id>
    POST       /api/v1/deals/<deal_id>/apply-template
    GET        /api/v1/deals/<deal_id>/tasks
    GET        /api/v1/deals/<deal_id>/tasks/grouped
    GET        /api/v1/deals/<deal_id>/activity

Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, jsonify, request

from diligence.blueprints import actor_user_id, pagination_args
from diligence.services import deal_service, task_service, user_service
from diligence.services.task_grouping import (
    SORT_ASC,
    TaskFilters,
    describe_groups,
    filter_tasks,
    group_tasks,
)
from diligence.services.taxonomy_service import get_taxonomy_store
from diligence.services.template_application import apply_template
from diligence.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

deal_bp = Blueprint("deal", __name__, url_prefix="/api/v1")
register_service_error_handlers(deal_bp)


def _int_or_none(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not an id")
    return int(value)


# ── Deals ────────────────────────────────────────────────────────────────────


@deal_bp.route("/deals", methods=["GET"])
def list_deals():
    limit, offset = pagination_args()
    items, total = deal_service.list_deals(limit=limit, offset=offset)
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset}), 200


@deal_bp.route("/deals", methods=["POST"])
def create_deal():
    """Create a deal.

    Body: {name, status?, start_date?, template_id?}
    With template_id the template is applied right away and the batch
    summary is returned under ``template_application``.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    try:
        template_id = _int_or_none(data.get("template_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "template_id must be an integer")

    result = deal_service.create_deal(data, template_id=template_id, actor_user_id=actor_user_id())
    return jsonify(result), 201


@deal_bp.route("/deals/<int:deal_id>", methods=["GET"])
def get_deal(deal_id):
    include_tasks = request.args.get("include_tasks", "").lower() in ("1", "true", "yes")
    return jsonify(deal_service.get_deal(deal_id, include_tasks=include_tasks)), 200


@deal_bp.route("/deals/<int:deal_id>", methods=["PATCH", "PUT"])
def update_deal(deal_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(deal_service.update_deal(deal_id, data, actor_user_id=actor_user_id())), 200


# ── Template application ─────────────────────────────────────────────────────


@deal_bp.route("/deals/<int:deal_id>/apply-template", methods=["POST"])
def apply_template_to_deal(deal_id):
    """Create one task per template item.

    Body: {template_id, skip_item_ids?: [int]}
    Returns 201 with the batch result; check ``failed_count`` /
    ``is_complete`` before reporting success.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    try:
        template_id = _int_or_none(data.get("template_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "template_id must be an integer")
    if template_id is None:
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")

    skip = data.get("skip_item_ids") or []
    if not isinstance(skip, list):
        return api_error(E.VALIDATION_INVALID, "skip_item_ids must be a list of integers")
    try:
        skip = [_int_or_none(i) for i in skip]
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "skip_item_ids must be a list of integers")

    result = apply_template(
        deal_id, template_id,
        actor_user_id=actor_user_id(),
        skip_item_ids=[i for i in skip if i is not None],
    )
    return jsonify(result.to_dict()), 201


# ── Tasks of a deal ──────────────────────────────────────────────────────────


@deal_bp.route("/deals/<int:deal_id>/tasks", methods=["GET"])
def list_deal_tasks(deal_id):
    """Flat task list. Optional filters: phase, category, owner, status."""
    tasks = task_service.list_tasks(deal_id)
    selected = filter_tasks(tasks, TaskFilters.from_mapping(request.args))
    return jsonify([t.to_dict() for t in selected]), 200


@deal_bp.route("/deals/<int:deal_id>/tasks/grouped", methods=["GET"])
def grouped_deal_tasks(deal_id):
    """Tasks grouped for a view.

    Query params: view (phase|category|owner|date), phase, category,
    owner (user id or "unassigned"), status, sort (asc|desc, date view).
    """
    view = request.args.get("view", "phase")
    sort_order = request.args.get("sort", SORT_ASC)
    taxonomy = get_taxonomy_store()
    users = user_service.list_users()
    tasks = task_service.list_tasks(deal_id)

    groups = group_tasks(
        tasks, view, TaskFilters.from_mapping(request.args),
        taxonomy=taxonomy, users=users, sort_order=sort_order,
    )
    return jsonify({
        "deal_id": deal_id,
        "view": view,
        "groups": {key: [t.to_dict() for t in members] for key, members in groups.items()},
        "meta": describe_groups(groups, view, taxonomy=taxonomy, users=users),
    }), 200


@deal_bp.route("/deals/<int:deal_id>/activity", methods=["GET"])
def deal_activity(deal_id):
    limit, _ = pagination_args(default_limit=100, max_limit=500)
    return jsonify(deal_service.list_activity(deal_id, limit=limit)), 200
