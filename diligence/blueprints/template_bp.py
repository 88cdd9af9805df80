"""
Task template blueprint.

Endpoints:
    GET/POST          /api/v1/task-templates
    GET               /api/v1/task-templates/default
    GET               /api/v1/task-templates/csv-sample
    POST              /api/v1/task-templates/import-csv
    GET/PATCH/DELETE  /api/v1/task-templates/<template_id>
    GET/POST          /api/v1/task-templates/<template_id>/items
    PATCH/DELETE      /api/v1/task-template-items/<item_id>
"""

from flask import Blueprint, Response, jsonify, request

from diligence.blueprints import actor_user_id
from diligence.services import template_service
from diligence.services.template_csv import generate_csv_sample, import_template_from_csv
from diligence.utils.errors import E, api_error, register_service_error_handlers

template_bp = Blueprint("template", __name__, url_prefix="/api/v1")
register_service_error_handlers(template_bp)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ── Templates ────────────────────────────────────────────────────────────────


@template_bp.route("/task-templates", methods=["GET"])
def list_templates():
    return jsonify(template_service.list_templates()), 200


@template_bp.route("/task-templates", methods=["POST"])
def create_template():
    """Body: {name, description?, is_default?, items?: [{title, phase, category, days_from_start, ...}]}"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    result = template_service.create_template(data, actor_user_id=actor_user_id())
    return jsonify(result), 201


@template_bp.route("/task-templates/default", methods=["GET"])
def get_default_template():
    return jsonify(template_service.get_default_template()), 200


@template_bp.route("/task-templates/csv-sample", methods=["GET"])
def csv_sample():
    return Response(
        generate_csv_sample(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=task_template_sample.csv"},
    )


@template_bp.route("/task-templates/import-csv", methods=["POST"])
def import_csv():
    """Create a template from CSV.

    JSON body: {name, description?, csv_content, is_default?}
    or multipart form: name, description?, file.
    """
    data = _json_body()
    if data is not None:
        name = data.get("name")
        description = data.get("description")
        content = data.get("csv_content")
        is_default = bool(data.get("is_default", False))
    else:
        name = request.form.get("name")
        description = request.form.get("description")
        upload = request.files.get("file")
        content = upload.read() if upload else None
        is_default = request.form.get("is_default", "").lower() in ("1", "true", "yes")

    if not content:
        return api_error(E.VALIDATION_REQUIRED, "csv_content (or file) is required")
    result = import_template_from_csv(
        name, description, content,
        created_by=actor_user_id(), is_default=is_default,
    )
    return jsonify(result), 201


@template_bp.route("/task-templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(template_service.get_template(template_id)), 200


@template_bp.route("/task-templates/<int:template_id>", methods=["PATCH", "PUT"])
def update_template(template_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    result = template_service.update_template(template_id, data, actor_user_id=actor_user_id())
    return jsonify(result), 200


@template_bp.route("/task-templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    affects = template_service.delete_template(template_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": template_id, "affects": affects}), 200


# ── Items ────────────────────────────────────────────────────────────────────


@template_bp.route("/task-templates/<int:template_id>/items", methods=["GET"])
def list_items(template_id):
    return jsonify(template_service.list_items(template_id)), 200


@template_bp.route("/task-templates/<int:template_id>/items", methods=["POST"])
def add_item(template_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    result = template_service.add_item(template_id, data, actor_user_id=actor_user_id())
    return jsonify(result), 201


@template_bp.route("/task-template-items/<int:item_id>", methods=["PATCH", "PUT"])
def update_item(item_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(template_service.update_item(item_id, data, actor_user_id=actor_user_id())), 200


@template_bp.route("/task-template-items/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    affects = template_service.delete_item(item_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": item_id, "affects": affects}), 200
