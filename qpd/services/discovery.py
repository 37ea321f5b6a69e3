"""
Discovery questionnaire - four single-choice questions that steer a user
towards a process and pre-fill the guided wizard.

    situation_type → impact_severity → action_type → urgency

Answers are a flat mapping ``{question_id: option_id}``.  Every answered
question must be known and its option must be one the question declares.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import func, or_

from qpd.core.exceptions import ValidationError
from qpd.models.process import Process

logger = logging.getLogger(__name__)

RECOMMENDED_KEYWORD = "CAPA"

DISCOVERY_QUESTIONS = (
    {
        "id": "situation_type",
        "title": "What type of situation are you dealing with today?",
        "description": "This helps us understand the nature of your work and recommend "
                       "the most appropriate process.",
        "options": (
            {"id": "quality_issue", "label": "Quality issue or deviation detected",
             "description": "Product doesn't meet specifications or standards"},
            {"id": "customer_complaint", "label": "Customer complaint received",
             "description": "External feedback about product or service issues"},
            {"id": "audit_finding", "label": "Internal audit finding",
             "description": "Non-conformance identified during internal review"},
            {"id": "improvement_opportunity", "label": "Process improvement opportunity",
             "description": "Proactive enhancement to prevent future issues"},
            {"id": "risk_assessment", "label": "Risk assessment follow-up",
             "description": "Action required based on risk analysis"},
        ),
    },
    {
        "id": "impact_severity",
        "title": "How would you describe the impact or severity?",
        "description": "Understanding the impact helps prioritize and route your request "
                       "appropriately.",
        "options": (
            {"id": "product_safety", "label": "Affects product quality/safety",
             "description": "Could impact patient safety or product efficacy"},
            {"id": "customer_satisfaction", "label": "Affects customer satisfaction",
             "description": "Customer experience or satisfaction impact"},
            {"id": "regulatory_compliance", "label": "Regulatory/compliance concern",
             "description": "May affect regulatory compliance or reporting"},
            {"id": "process_efficiency", "label": "Process efficiency issue",
             "description": "Impacts operational efficiency or workflow"},
            {"id": "cost_impact", "label": "Cost impact",
             "description": "Financial implications or resource waste"},
            {"id": "minor_impact", "label": "No immediate impact but needs attention",
             "description": "Preventive measure or minor improvement"},
        ),
    },
    {
        "id": "action_type",
        "title": "What type of action do you think is needed?",
        "description": "This helps us understand whether you need corrective, preventive, "
                       "or both types of actions.",
        "options": (
            {"id": "corrective", "label": "Fix the immediate problem (Corrective)",
             "description": "Address the root cause of an existing issue"},
            {"id": "preventive", "label": "Prevent similar issues in the future (Preventive)",
             "description": "Implement measures to prevent potential problems"},
            {"id": "both", "label": "Both corrective and preventive actions",
             "description": "Comprehensive approach addressing current and future risks"},
            {"id": "unsure", "label": "Not sure, need guidance",
             "description": "Would benefit from expert guidance on approach"},
        ),
    },
    {
        "id": "urgency",
        "title": "How urgent is this matter?",
        "description": "Timeline helps us prioritize and ensure appropriate resources "
                       "are allocated.",
        "options": (
            {"id": "immediate", "label": "Immediate attention required",
             "description": "Critical issue requiring urgent action"},
            {"id": "this_week", "label": "Should be addressed this week",
             "description": "Important but not critical"},
            {"id": "next_month", "label": "Can be planned for next month",
             "description": "Standard priority planning"},
            {"id": "long_term", "label": "Long-term improvement initiative",
             "description": "Strategic improvement with flexible timeline"},
        ),
    },
)

_QUESTIONS = {q["id"]: q for q in DISCOVERY_QUESTIONS}

# impact_severity option → severity wording offered to a severity field
SEVERITY_BY_IMPACT = {
    "product_safety": "Critical",
    "regulatory_compliance": "High",
    "customer_satisfaction": "Medium",
    "cost_impact": "Medium",
    "process_efficiency": "Low",
    "minor_impact": "Low",
}

# urgency option → days until target completion
TARGET_DAYS_BY_URGENCY = {
    "immediate": 7,
    "this_week": 14,
    "next_month": 30,
    "long_term": 90,
}

DESCRIPTION_FIELDS = ("description", "issue_description", "problem_description")
SEVERITY_FIELDS = ("severity", "severity_level")
TARGET_DATE_FIELDS = ("target_completion_date", "target_date", "due_date")


def option_label(question_id: str, option_id: str | None) -> str | None:
    question = _QUESTIONS.get(question_id)
    if not question or not option_id:
        return None
    for option in question["options"]:
        if option["id"] == option_id:
            return option["label"]
    return None


def questions() -> list[dict]:
    """Questions in asking order, JSON-ready."""
    return [
        {**q, "options": [dict(o) for o in q["options"]]}
        for q in DISCOVERY_QUESTIONS
    ]


def validate_answers(answers) -> dict:
    """Check a ``{question_id: option_id}`` mapping; returns it unchanged.

    Raises:
        ValidationError: unknown question, unknown option, or not a mapping.
    """
    if answers is None:
        return {}
    if not isinstance(answers, dict):
        raise ValidationError(
            "Discovery answers must be an object",
            details={"answers": f"got {type(answers).__name__}"},
        )
    errors = {}
    for question_id, option_id in answers.items():
        if question_id not in _QUESTIONS:
            errors[question_id] = "unknown question"
        elif option_label(question_id, option_id) is None:
            errors[question_id] = f"unknown option {option_id!r}"
    if errors:
        raise ValidationError("Invalid discovery answers", details=errors)
    return answers


def recommendation_text(answers: dict) -> str:
    situation = answers.get("situation_type")
    action = answers.get("action_type")
    if situation in ("quality_issue", "customer_complaint"):
        return (
            "Based on your responses, a CAPA (Corrective and Preventive Action) process "
            "is strongly recommended. This will help you systematically address the "
            "issue and prevent recurrence."
        )
    if action in ("both", "corrective"):
        return (
            "Your situation calls for a structured CAPA approach to ensure both immediate "
            "correction and long-term prevention measures are implemented effectively."
        )
    return (
        "A CAPA process will provide the structured framework needed to properly "
        "document, investigate, and resolve your quality concern while preventing "
        "similar issues in the future."
    )


def _find_recommended_process() -> Process | None:
    keyword = RECOMMENDED_KEYWORD.lower()
    match = (
        Process.query
        .filter(Process.is_active.is_(True))
        .filter(or_(
            func.lower(Process.tag) == keyword,
            func.lower(Process.name) == keyword,
            func.lower(Process.record_id_prefix) == keyword,
        ))
        .order_by(Process.id)
        .first()
    )
    if match:
        return match
    return Process.query.filter(Process.is_active.is_(True)).order_by(Process.name, Process.id).first()


def recommend(answers) -> dict:
    """Pick the process a user should start with.

    Returns:
        {"process": dict|None, "recommendation": str, "answers": dict}
    """
    answers = validate_answers(answers)
    process = _find_recommended_process()
    logger.info("Discovery recommendation process=%s", process.id if process else None)
    return {
        "process": process.to_dict() if process else None,
        "recommendation": recommendation_text(answers),
        "answers": answers,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Wizard pre-fill
# ──────────────────────────────────────────────────────────────────────────────

def prefill_title(answers: dict) -> str:
    return option_label("situation_type", answers.get("situation_type")) or ""


def _description_text(answers: dict) -> str:
    parts = []
    situation = option_label("situation_type", answers.get("situation_type"))
    impact = option_label("impact_severity", answers.get("impact_severity"))
    action = option_label("action_type", answers.get("action_type"))
    if situation:
        parts.append(f"Situation: {situation}.")
    if impact:
        parts.append(f"Impact: {impact}.")
    if action:
        parts.append(f"Action needed: {action}.")
    return " ".join(parts)


def _match_option(field, wanted: str) -> str | None:
    """Select fields only take one of their declared options (case-insensitive)."""
    if field.field_type != "select":
        return wanted
    for option in field.options:
        if option.lower() == wanted.lower():
            return option
    return None


def prefill_values(fields, answers: dict, today: date | None = None) -> dict[int, str]:
    """Map discovery answers onto fields whose machine names we recognise.

    Unmatched fields are left out, so they stay empty.
    """
    today = today or date.today()
    values = {}
    for field in fields:
        name = field.field_name.lower()
        value = None
        if name in DESCRIPTION_FIELDS:
            value = _description_text(answers) or None
        elif name in SEVERITY_FIELDS:
            severity = SEVERITY_BY_IMPACT.get(answers.get("impact_severity"))
            value = _match_option(field, severity) if severity else None
        elif name in TARGET_DATE_FIELDS:
            days = TARGET_DAYS_BY_URGENCY.get(answers.get("urgency"))
            if days is not None:
                value = _match_option(field, (today + timedelta(days=days)).isoformat())
        if value:
            values[field.id] = value
    return values
