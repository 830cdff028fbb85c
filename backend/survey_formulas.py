# Survey design formulas: capacity, composition, logical density, cognitive burden
from __future__ import annotations
import math
from dataclasses import dataclass, field
from enum import Enum


class SurveyPurpose(str, Enum):
    EXPLORATORY = "Exploratory"
    DESCRIPTIVE = "Descriptive"
    OTHER = "Other"


class SurveyLogic(str, Enum):
    LINEAR = "Linear"
    ADAPTIVE = "Adaptive"


@dataclass
class QuestionTimeParams:
    base_time: float          # seconds
    modality_factor: float = 1.0
    depth_factor: float = 1.0

    @property
    def weighted_time(self) -> float:
        return self.base_time * self.modality_factor * self.depth_factor


@dataclass
class CapacityParams:
    total_time: float         # seconds
    questions: list[QuestionTimeParams] = field(default_factory=list)
    efficiency_factor: float = 0.8


@dataclass
class QuestionMix:
    closed: float
    scaled: float
    open: float

    def as_dict(self) -> dict[str, float]:
        return {"closed": self.closed, "scaled": self.scaled, "open": self.open}


@dataclass
class BurdenIndexParams:
    total_questions: int
    complexity_factor: float
    total_time: float         # seconds


# -------------------------------------------------------
# 1. Capacity
# -------------------------------------------------------

def calculate_total_weighted_time(questions: list[QuestionTimeParams]) -> float:
    return sum(q.weighted_time for q in questions)


def calculate_question_capacity(params: CapacityParams) -> float:
    """
    How many questions fit into the time budget.

    floor((total_time * efficiency_factor) / average_weighted_time).
    Returns 0 with no questions or a non-positive time budget, and
    ``math.inf`` when the average weighted time is zero or the ratio overflows.
    """
    if not params.questions or params.total_time <= 0:
        return 0
    average = calculate_total_weighted_time(params.questions) / len(params.questions)
    if average == 0:
        return math.inf
    ratio = (params.total_time * params.efficiency_factor) / average
    return ratio if math.isinf(ratio) else math.floor(ratio)


# -------------------------------------------------------
# 2. Composition
# -------------------------------------------------------

_COMPOSITION = {
    SurveyPurpose.EXPLORATORY: QuestionMix(closed=0.2, scaled=0.2, open=0.6),
    SurveyPurpose.DESCRIPTIVE: QuestionMix(closed=0.2, scaled=0.7, open=0.1),
}


def get_question_composition(purpose: SurveyPurpose | str) -> QuestionMix:
    """Closed/scaled/open ratios for a purpose; uniform thirds for anything unknown."""
    try:
        key = SurveyPurpose(purpose)
    except ValueError:
        key = SurveyPurpose.OTHER
    mix = _COMPOSITION.get(key)
    if mix is None:
        return QuestionMix(closed=1 / 3, scaled=1 / 3, open=1 / 3)
    return QuestionMix(closed=mix.closed, scaled=mix.scaled, open=mix.open)


# -------------------------------------------------------
# 3. Logical density
# -------------------------------------------------------

def calculate_logical_density(branching_nodes: int, total_questions: int,
                              logic_type: SurveyLogic | str) -> float:
    if logic_type == SurveyLogic.LINEAR or total_questions == 0:
        return 0
    return min(branching_nodes / total_questions, 1.0)


# -------------------------------------------------------
# 4. Cognitive burden
# -------------------------------------------------------

def calculate_cognitive_burden_index(params: BurdenIndexParams) -> float:
    if params.total_time == 0:
        return math.inf
    return (params.total_questions * params.complexity_factor) / params.total_time


def is_burden_too_high(index: float, threshold: float) -> bool:
    return index > threshold
