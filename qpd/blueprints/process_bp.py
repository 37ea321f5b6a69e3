"""
Process configuration blueprint.

Blueprint: process
Prefix: /api/v1

Endpoints:
  Processes:
    GET/POST        /processes                       -- List (?include_inactive=1) / create
    GET             /processes/sidebar               -- Active processes grouped by tag
    POST            /processes/suggestions/parse     -- Normalise an AI suggestion payload
    POST            /processes/from-suggestion       -- Create process + fields + steps at once
    GET/PUT/DELETE  /processes/<pid>                 -- Detail / update / deactivate
    GET             /processes/<pid>/linkable        -- Processes a record may trigger

  Fields:
    GET/POST        /processes/<pid>/fields
    PUT/DELETE      /fields/<fid>

  Workflow steps:
    GET/POST        /processes/<pid>/steps
    PUT/DELETE      /steps/<sid>

Service layer owns all business logic and commits; service exceptions are
mapped to JSON errors by the app-level handlers.
"""

import logging

from flask import Blueprint, jsonify, request

import qpd.services.process_service as ps
from qpd.services import suggestions
from qpd.utils.errors import E, api_error
from qpd.utils.helpers import current_user_id, json_body

logger = logging.getLogger(__name__)

process_bp = Blueprint("process", __name__, url_prefix="/api/v1")


def _truthy(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════
# Processes
# ═════════════════════════════════════════════════════════════════════════


@process_bp.route("/processes", methods=["GET"])
def list_processes():
    """List processes with record counts.

    Query params: include_inactive (bool, default false)
    """
    items = ps.list_processes(include_inactive=_truthy(request.args.get("include_inactive")))
    return jsonify({"items": items, "total": len(items)}), 200


@process_bp.route("/processes", methods=["POST"])
def create_process():
    """Create a process.

    Body: {name, description?, tag?, record_id_prefix?, ai_suggestion?, sub_entity_config?}
    """
    data = json_body()
    if not isinstance(data.get("name"), str) or not data["name"].strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    if len(data["name"]) > 200:
        return api_error(E.VALIDATION_INVALID, "name must be <= 200 characters")
    return jsonify(ps.create_process(data, created_by=current_user_id())), 201


@process_bp.route("/processes/sidebar", methods=["GET"])
def sidebar():
    """Active processes grouped by tag ("Untagged" last)."""
    return jsonify({"groups": ps.list_processes_by_tag()}), 200


@process_bp.route("/processes/suggestions/parse", methods=["POST"])
def parse_suggestion():
    """Normalise a raw suggestion into {name, description, fields, steps, explanation}."""
    payload = request.get_json(silent=True)
    if payload is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    return jsonify(suggestions.parse_suggestion(payload).to_dict()), 200


@process_bp.route("/processes/from-suggestion", methods=["POST"])
def create_from_suggestion():
    """Commit the edited wizard result.

    Body: {name, description?, tag?, record_id_prefix?, explanation?,
           fields: [...], steps: [...]}
    """
    data = json_body()
    for key in ("fields", "steps"):
        if key in data and not isinstance(data[key], list):
            return api_error(E.VALIDATION_INVALID, f"{key} must be a list")
    process = suggestions.create_process_from_suggestion(data, created_by=current_user_id())
    return jsonify(process), 201


@process_bp.route("/processes/<int:pid>", methods=["GET"])
def get_process(pid):
    return jsonify(ps.get_process(pid)), 200


@process_bp.route("/processes/<int:pid>", methods=["PUT"])
def update_process(pid):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    return jsonify(ps.update_process(pid, data)), 200


@process_bp.route("/processes/<int:pid>", methods=["DELETE"])
def deactivate_process(pid):
    """Soft delete - the process is hidden, its records remain."""
    return jsonify(ps.deactivate_process(pid)), 200


@process_bp.route("/processes/<int:pid>/linkable", methods=["GET"])
def linkable_processes(pid):
    items = ps.list_linkable_processes(pid)
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Fields
# ═════════════════════════════════════════════════════════════════════════


@process_bp.route("/processes/<int:pid>/fields", methods=["GET"])
def list_fields(pid):
    items = ps.list_fields(pid)
    return jsonify({"items": items, "total": len(items)}), 200


@process_bp.route("/processes/<int:pid>/fields", methods=["POST"])
def add_field(pid):
    """Body: {field_name, field_label, field_type?, is_required?, display_order?,
              field_options?, validation_rules?}"""
    data = json_body()
    for key in ("field_name", "field_label"):
        if not isinstance(data.get(key), str) or not data[key].strip():
            return api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    return jsonify(ps.add_field(pid, data)), 201


@process_bp.route("/fields/<int:fid>", methods=["PUT"])
def update_field(fid):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    return jsonify(ps.update_field(fid, data)), 200


@process_bp.route("/fields/<int:fid>", methods=["DELETE"])
def delete_field(fid):
    ps.delete_field(fid)
    return jsonify({"message": "Field deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow steps
# ═════════════════════════════════════════════════════════════════════════


@process_bp.route("/processes/<int:pid>/steps", methods=["GET"])
def list_steps(pid):
    items = ps.list_steps(pid)
    return jsonify({"items": items, "total": len(items)}), 200


@process_bp.route("/processes/<int:pid>/steps", methods=["POST"])
def add_step(pid):
    """Body: {step_name, step_order?, required_role?, can_approve?, can_reject?}"""
    data = json_body()
    if not isinstance(data.get("step_name"), str) or not data["step_name"].strip():
        return api_error(E.VALIDATION_REQUIRED, "step_name is required")
    return jsonify(ps.add_step(pid, data)), 201


@process_bp.route("/steps/<int:sid>", methods=["PUT"])
def update_step(sid):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    return jsonify(ps.update_step(sid, data)), 200


@process_bp.route("/steps/<int:sid>", methods=["DELETE"])
def delete_step(sid):
    ps.delete_step(sid)
    return jsonify({"message": "Step deleted"}), 200
