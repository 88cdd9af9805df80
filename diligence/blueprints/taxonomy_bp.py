"""
Taxonomy blueprint — phase / category / status vocabularies.

Endpoints:
    GET     /api/v1/taxonomy/<namespace>                  built-in + custom values
    POST    /api/v1/taxonomy/<namespace>                  add custom value {value}
    DELETE  /api/v1/taxonomy/<namespace>/<value>          remove custom value
    GET     /api/v1/taxonomy/<namespace>/<value>/style    label + color for any value

Custom sets are shared process-wide; every request loads a fresh store.
"""

from flask import Blueprint, jsonify, request

from diligence.services.taxonomy_service import get_taxonomy_store
from diligence.utils.errors import E, api_error, register_service_error_handlers

taxonomy_bp = Blueprint("taxonomy", __name__, url_prefix="/api/v1")
register_service_error_handlers(taxonomy_bp)


def _affects(namespace: str) -> list[str]:
    return [f"taxonomy:{namespace}"]


@taxonomy_bp.route("/taxonomy/<namespace>", methods=["GET"])
def list_values(namespace):
    store = get_taxonomy_store()
    values = store.list_values(namespace)
    return jsonify(values.to_dict(custom_order=store.custom_values(namespace))), 200


@taxonomy_bp.route("/taxonomy/<namespace>", methods=["POST"])
def add_value(namespace):
    """Body: {value}. 409 when the value already exists (built-in or custom)."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "value" not in data:
        return api_error(E.VALIDATION_REQUIRED, "value is required")
    store = get_taxonomy_store()
    token = store.add_custom_value(namespace, data["value"])
    return jsonify({
        "namespace": namespace,
        "value": token,
        "label": store.display_label(namespace, token),
        "color": store.color_class(namespace, token),
        "affects": _affects(namespace),
    }), 201


@taxonomy_bp.route("/taxonomy/<namespace>/<value>", methods=["DELETE"])
def remove_value(namespace, value):
    """Tasks already carrying the value keep it."""
    store = get_taxonomy_store()
    store.remove_custom_value(namespace, value)
    return jsonify({"namespace": namespace, "removed": value, "affects": _affects(namespace)}), 200


@taxonomy_bp.route("/taxonomy/<namespace>/<value>/style", methods=["GET"])
def value_style(namespace, value):
    store = get_taxonomy_store()
    return jsonify({
        "namespace": namespace,
        "value": value,
        "label": store.display_label(namespace, value),
        "color": store.color_class(namespace, value),
        "builtin": store.is_builtin(namespace, value),
        "known": store.is_known(namespace, value),
    }), 200
