"""
Guided creation blueprint - discovery questionnaire and wizard sessions.

Blueprint: guided
Prefix: /api/v1

Endpoints:
    GET    /discovery/questions                  -- The four discovery questions
    POST   /discovery/recommendation             -- {answers} → recommended process
    POST   /processes/<pid>/guided-sessions      -- Start a wizard run
    GET    /guided-sessions/<sid>                -- Session state
    PATCH  /guided-sessions/<sid>                -- Title / values / linked process / tasks
    POST   /guided-sessions/<sid>/next           -- Advance (409 if stage incomplete)
    POST   /guided-sessions/<sid>/previous       -- Go back one stage
    POST   /guided-sessions/<sid>/commit         -- Create the record (review stage only)
"""

import logging

from flask import Blueprint, jsonify

from qpd.services import discovery, guided_creation
from qpd.utils.errors import E, api_error
from qpd.utils.helpers import current_user_id, json_body

logger = logging.getLogger(__name__)

guided_bp = Blueprint("guided", __name__, url_prefix="/api/v1")


# ── Discovery ────────────────────────────────────────────────────────────────


@guided_bp.route("/discovery/questions", methods=["GET"])
def discovery_questions():
    return jsonify({"questions": discovery.questions()}), 200


@guided_bp.route("/discovery/recommendation", methods=["POST"])
def discovery_recommendation():
    """Body: {answers: {question_id: option_id}}"""
    answers = json_body().get("answers")
    if not isinstance(answers, dict):
        return api_error(E.VALIDATION_REQUIRED, "answers (object) is required")
    return jsonify(discovery.recommend(answers)), 200


# ── Sessions ─────────────────────────────────────────────────────────────────


@guided_bp.route("/processes/<int:pid>/guided-sessions", methods=["POST"])
def start_session(pid):
    """Body: {discovery?: {question_id: option_id}, source_link_id?: int}"""
    data = json_body()
    answers = data.get("discovery")
    if answers is not None and not isinstance(answers, dict):
        return api_error(E.VALIDATION_INVALID, "discovery must be an object")
    source_link_id = data.get("source_link_id")
    if source_link_id is not None and (
        not isinstance(source_link_id, int) or isinstance(source_link_id, bool)
    ):
        return api_error(E.VALIDATION_INVALID, "source_link_id must be an integer")

    state = guided_creation.start_session(
        pid,
        created_by=current_user_id(),
        discovery_answers=answers,
        source_link_id=source_link_id,
    )
    return jsonify(state), 201


@guided_bp.route("/guided-sessions/<int:sid>", methods=["GET"])
def get_session(sid):
    return jsonify(guided_creation.get_session(sid)), 200


@guided_bp.route("/guided-sessions/<int:sid>", methods=["PATCH"])
def update_session(sid):
    """Body: any of {record_title, values, linked_process_id, tasks}"""
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    if "record_title" in data and not isinstance(data["record_title"], (str, type(None))):
        return api_error(E.VALIDATION_INVALID, "record_title must be a string")
    return jsonify(guided_creation.update_session(sid, data)), 200


@guided_bp.route("/guided-sessions/<int:sid>/next", methods=["POST"])
def next_stage(sid):
    return jsonify(guided_creation.advance(sid)), 200


@guided_bp.route("/guided-sessions/<int:sid>/previous", methods=["POST"])
def previous_stage(sid):
    return jsonify(guided_creation.go_back(sid)), 200


@guided_bp.route("/guided-sessions/<int:sid>/commit", methods=["POST"])
def commit_session(sid):
    """Returns: {record, session, warnings} (201)."""
    return jsonify(guided_creation.commit_session(sid)), 201
