"""
User directory blueprint.

Endpoints:
    GET/POST  /api/v1/users
    GET       /api/v1/users/<user_id>
"""

from flask import Blueprint, jsonify, request

from diligence.services import user_service
from diligence.utils.errors import E, api_error, register_service_error_handlers

user_bp = Blueprint("user", __name__, url_prefix="/api/v1")
register_service_error_handlers(user_bp)


@user_bp.route("/users", methods=["GET"])
def list_users():
    return jsonify([u.to_dict() for u in user_service.list_users()]), 200


@user_bp.route("/users", methods=["POST"])
def create_user():
    """Body: {username, name, role?, specialization?}"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    user = user_service.create_user(
        data.get("username"),
        data.get("name"),
        role=data.get("role") or "functional_lead",
        specialization=data.get("specialization"),
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/users/<int:user_id>", methods=["GET"])
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200
