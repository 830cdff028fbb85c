# Flattens blueprint / AI output (sections or plain question lists) into editor items
from __future__ import annotations
import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)


def _normalize_question(question: dict) -> dict:
    raw_options = question.get("options")
    options = dict(raw_options) if isinstance(raw_options, dict) else {}

    if question.get("question_type") == "rating":
        weight = question.get("weight")
        scale_max = question.get("scale_max")
        final_options: Any = {
            "weight": weight if weight is not None else options.get("weight", 1.0),
            "scale_max": scale_max if scale_max is not None else options.get("scale_max", 5),
            "label_min": options.get("label_min") or "",
            "label_max": options.get("label_max") or "",
        }
    else:
        # choice lists are passed through untouched
        final_options = raw_options if isinstance(raw_options, list) else options
        if question.get("weight") is not None and isinstance(final_options, dict):
            final_options["weight"] = question["weight"]

    required = question.get("is_required")
    return {
        "id": str(uuid.uuid4()),
        "item_type": "question",
        "text": question.get("question_text", ""),
        "type": question.get("question_type"),
        "required": True if required is None else bool(required),
        "options": final_options,
        "is_standard": True,
    }


def normalize_survey_items(raw: Any) -> list[dict]:
    """
    Return a flat list of section/question items.

    Section-based input (``[{"title", "questions": [...]}]``) produces a section
    item followed by its questions; a plain list is treated as questions only.
    """
    if not isinstance(raw, list):
        logger.error("normalize_survey_items expects a list, got %s", type(raw).__name__)
        return []

    items: list[dict] = []
    section_based = bool(raw) and isinstance(raw[0], dict) and "title" in raw[0] and "questions" in raw[0]

    if section_based:
        for section in raw:
            items.append({"id": str(uuid.uuid4()), "item_type": "section", "text": section.get("title", "")})
            questions = section.get("questions")
            if isinstance(questions, list):
                items.extend(_normalize_question(q) for q in questions)
    else:
        items.extend(_normalize_question(q) for q in raw)
    return items
