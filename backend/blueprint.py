# Turns survey meta-parameters into a blueprint (question budget + type mix)
from __future__ import annotations
import math
from typing import Optional

DEFAULT_TIME_CONSTRAINT = 600          # seconds
USABLE_TIME_RATIO = 0.85               # 15% reserved for intro/outro

BASE_TIME_PER_QUESTION = {
    "Web_Visual": 15,
    "Mobile_Visual": 20,
    "Conversational_Text": 25,
    "Conversational_Voice": 40,
    "Face_to_Face": 30,
}
DEFAULT_BASE_TIME = 20

DEPTH_MULTIPLIER = {
    "Low": 0.8,
    "Medium": 1.0,
    "High": 1.3,
    "Very_High": 1.5,
}

BASE_MIX = {
    "Exploratory":  {"closed": 20, "scaled": 20, "open": 60, "ranking": 0},
    "Descriptive":  {"closed": 30, "scaled": 60, "open": 10, "ranking": 0},
    "Analytical":   {"closed": 40, "scaled": 30, "open": 30, "ranking": 0},
    "Confirmatory": {"closed": 50, "scaled": 40, "open": 10, "ranking": 0},
    "Evaluative":   {"closed": 30, "scaled": 60, "open": 10, "ranking": 0},
    "Monitoring":   {"closed": 30, "scaled": 60, "open": 10, "ranking": 0},
}

# data types that call for more free-text questions
_NARRATIVE_DATA_TYPES = {"Causes", "Experiences"}


def calculate_max_questions(time_constraint: Optional[float] = None,
                            mode: Optional[str] = None,
                            granularity: Optional[str] = None) -> int:
    """Number of questions that fit the usable part of the time budget."""
    if time_constraint is None:
        time_constraint = DEFAULT_TIME_CONSTRAINT
    base = BASE_TIME_PER_QUESTION.get("Web_Visual" if mode is None else mode, DEFAULT_BASE_TIME)
    depth = DEPTH_MULTIPLIER.get("Medium" if granularity is None else granularity, 1.0)
    avg_time = base * depth
    if avg_time == 0:
        return 0
    return math.floor(time_constraint * USABLE_TIME_RATIO / avg_time)


def determine_question_mix(purpose: Optional[str] = None,
                           data_types: Optional[list[str]] = None,
                           response_format: Optional[str] = None) -> dict[str, int]:
    """
    Percentages of closed/scaled/open/ranking questions.

    ``response_format`` is accepted for forward compatibility but does not
    influence the mix yet.
    """
    mix = dict(BASE_MIX.get(purpose or "Descriptive", BASE_MIX["Descriptive"]))

    if _NARRATIVE_DATA_TYPES.intersection(data_types or []):
        mix["open"] += 20
        mix["closed"] = max(0, mix["closed"] - 10)
        mix["scaled"] = max(0, mix["scaled"] - 10)

    total = sum(mix.values())
    if total == 0:
        return {"closed": 100, "scaled": 0, "open": 0, "ranking": 0}
    # half-up rounding, not banker's
    return {k: math.floor(v / total * 100 + 0.5) for k, v in mix.items()}


def calculate_blueprint(params: dict) -> dict:
    """
    Args:
        params (dict): Meta-parameters (time_constraint, mode, granularity,
            purpose, data_types, response_format, scope); all optional.

    Returns:
        dict: {"max_questions", "question_mix", "sections"}
    """
    return {
        "max_questions": calculate_max_questions(
            params.get("time_constraint"), params.get("mode"), params.get("granularity"),
        ),
        "question_mix": determine_question_mix(
            params.get("purpose"), params.get("data_types"), params.get("response_format"),
        ),
        "sections": [],
    }
