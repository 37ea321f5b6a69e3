"""
Records, workflow and links blueprint.

Blueprint: record
Prefix: /api/v1

Endpoints:
  Records:
    GET       /records                          -- All records (?process_id, ?status, paginated)
    GET/POST  /processes/<pid>/records          -- Records of a process / quick-create
    GET/PUT   /records/<rid>                    -- Detail / edit title + assignee
    GET/PUT   /records/<rid>/values             -- Field values / upsert values

  Workflow:
    GET/POST  /records/<rid>/workflow           -- Available actions / approve | reject
    GET       /records/<rid>/history            -- Transition history

  Links:
    GET/POST  /records/<rid>/links              -- Outgoing + incoming / add pending link
    POST      /links/<lid>/resolve              -- Attach the follow-on record
    GET       /links/pending                    -- Unresolved links (?process_id)
"""

import logging

from flask import Blueprint, jsonify, request

import qpd.services.record_service as rs
from qpd.blueprints import paginated
from qpd.services import field_engine, record_links, workflow_engine
from qpd.services.process_service import get_process_or_404
from qpd.utils.errors import E, api_error
from qpd.utils.helpers import current_user_id, json_body

logger = logging.getLogger(__name__)

record_bp = Blueprint("record", __name__, url_prefix="/api/v1")


def _values_arg(data: dict):
    values = data.get("values", {})
    if values is None:
        return {}, None
    if not isinstance(values, dict):
        return None, api_error(E.VALIDATION_INVALID, "values must be an object of field_id -> string")
    return values, None


# ═════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════


@record_bp.route("/records", methods=["GET"])
def list_records():
    """Query params: process_id, status, limit, offset."""
    process_id = request.args.get("process_id", type=int)
    query = rs.list_records(process_id=process_id, status=request.args.get("status"))
    return jsonify(paginated(query, rs.serialize_records)), 200


@record_bp.route("/processes/<int:pid>/records", methods=["GET"])
def list_process_records(pid):
    get_process_or_404(pid)
    query = rs.list_records(process_id=pid, status=request.args.get("status"))
    return jsonify(paginated(query, rs.serialize_records)), 200


@record_bp.route("/processes/<int:pid>/records", methods=["POST"])
def create_record(pid):
    """Quick-create a record.

    Body: {record_title, values?: {field_id: str}, assigned_to?, linked_process_id?}
    Returns: {record, warnings} (201).  Warnings list secondary writes that failed.
    """
    data = json_body()
    title = data.get("record_title")
    if not isinstance(title, str) or not title.strip():
        return api_error(E.VALIDATION_REQUIRED, "record_title is required")
    values, err = _values_arg(data)
    if err:
        return err

    result = rs.create_record(
        pid,
        title,
        values,
        created_by=current_user_id(),
        assigned_to=data.get("assigned_to"),
        linked_process_id=data.get("linked_process_id"),
    )
    return jsonify(result), 201


@record_bp.route("/records/<int:rid>", methods=["GET"])
def get_record(rid):
    return jsonify(rs.get_record(rid)), 200


@record_bp.route("/records/<int:rid>", methods=["PUT"])
def update_record(rid):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    return jsonify(rs.update_record(rid, data)), 200


@record_bp.route("/records/<int:rid>/values", methods=["GET"])
def get_values(rid):
    values = field_engine.get_values(rid)
    return jsonify({"record_id": rid, "values": {str(k): v for k, v in values.items()}}), 200


@record_bp.route("/records/<int:rid>/values", methods=["PUT"])
def update_values(rid):
    """Body: {values: {field_id: str}} - empty strings clear a value."""
    values, err = _values_arg(json_body())
    if err:
        return err
    return jsonify(rs.update_record_values(rid, values)), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════


@record_bp.route("/records/<int:rid>/workflow", methods=["GET"])
def workflow_state(rid):
    record = rs.get_record_or_404(rid)
    return jsonify(workflow_engine.available_actions(record)), 200


@record_bp.route("/records/<int:rid>/workflow", methods=["POST"])
def workflow_action(rid):
    """Body: {action: "approve" | "reject", comments?}  (comments required for reject)."""
    data = json_body()
    action = data.get("action")
    if not isinstance(action, str) or not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    comments = data.get("comments")
    if comments is not None and not isinstance(comments, str):
        return api_error(E.VALIDATION_INVALID, "comments must be a string")

    result = workflow_engine.perform_action(
        rid, action, performed_by=current_user_id(), comments=comments,
    )
    return jsonify(result), 200


@record_bp.route("/records/<int:rid>/history", methods=["GET"])
def history(rid):
    items = workflow_engine.get_history(rid)
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Links
# ═════════════════════════════════════════════════════════════════════════


@record_bp.route("/records/<int:rid>/links", methods=["GET"])
def list_links(rid):
    return jsonify({
        "outgoing": record_links.list_outgoing(rid),
        "incoming": record_links.list_incoming(rid),
    }), 200


@record_bp.route("/records/<int:rid>/links", methods=["POST"])
def create_link(rid):
    """Body: {target_process_id}"""
    target_process_id = json_body().get("target_process_id")
    if not isinstance(target_process_id, int) or isinstance(target_process_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "target_process_id (integer) is required")
    return jsonify(record_links.create_pending_link(rid, target_process_id)), 201


@record_bp.route("/links/<int:lid>/resolve", methods=["POST"])
def resolve_link(lid):
    """Body: {target_record_id}"""
    target_record_id = json_body().get("target_record_id")
    if not isinstance(target_record_id, int) or isinstance(target_record_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "target_record_id (integer) is required")
    return jsonify(record_links.resolve_link(lid, target_record_id)), 200


@record_bp.route("/links/pending", methods=["GET"])
def pending_links():
    """Query params: process_id (target process filter)."""
    items = record_links.list_pending_links(request.args.get("process_id", type=int))
    return jsonify({"items": items, "total": len(items)}), 200
