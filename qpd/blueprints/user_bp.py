"""
User directory blueprint.

Blueprint: user
Prefix: /api/v1

Endpoints:
    GET   /users     -- Profiles (?role filter), ordered by full name
    POST  /users     -- Create a profile {user_id, full_name, email, role?, department?}
"""

from flask import Blueprint, jsonify, request

from qpd.services import user_service
from qpd.utils.errors import E, api_error
from qpd.utils.helpers import json_body

user_bp = Blueprint("user", __name__, url_prefix="/api/v1")


@user_bp.route("/users", methods=["GET"])
def list_users():
    items = user_service.list_users(role=request.args.get("role"))
    return jsonify({"items": items, "total": len(items)}), 200


@user_bp.route("/users", methods=["POST"])
def create_user():
    data = json_body()
    for key in ("user_id", "full_name", "email"):
        if not isinstance(data.get(key), str) or not data[key].strip():
            return api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    for key in ("role", "department"):
        if data.get(key) is not None and not isinstance(data[key], str):
            return api_error(E.VALIDATION_INVALID, f"{key} must be a string")

    profile = user_service.create_user(
        user_id=data["user_id"],
        full_name=data["full_name"],
        email=data["email"],
        role=data.get("role"),
        department=data.get("department"),
    )
    return jsonify(profile), 201
