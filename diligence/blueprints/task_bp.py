"""
Task blueprint.

Endpoints:
    POST              /api/v1/tasks
    GET/PATCH/DELETE  /api/v1/tasks/<task_id>
"""

from flask import Blueprint, jsonify, request

from diligence.blueprints import actor_user_id
from diligence.services import task_service
from diligence.utils.errors import E, api_error, register_service_error_handlers

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")
register_service_error_handlers(task_bp)


@task_bp.route("/tasks", methods=["POST"])
def create_task():
    """Body: {deal_id, title, phase, category, status?, description?, due_date?, assigned_to?}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    if data.get("deal_id") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "deal_id is required")
    return jsonify(task_service.create_task(data, actor_user_id=actor_user_id())), 201


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task(task_id)), 200


@task_bp.route("/tasks/<int:task_id>", methods=["PATCH", "PUT"])
def update_task(task_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(task_service.update_task(task_id, data, actor_user_id=actor_user_id())), 200


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    affects = task_service.delete_task(task_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": task_id, "affects": affects}), 200
