"""Quiz question model, validation, answer balancing and scoring."""

import json
import logging
import math
import re
from dataclasses import dataclass, replace

from .errors import QuestionFormatError

logger = logging.getLogger(__name__)

QUESTIONS_PER_QUIZ = 10
OPTIONS_PER_QUESTION = 4
MAX_ANSWER_SHARE = 0.4
# Preferred correct-answer counts for indices A, B, C, D
TARGET_DISTRIBUTION = (2, 3, 2, 3)

_FENCE_RE = re.compile(r"```json\n?|\n?```|```\n?")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass(frozen=True)
class Question:
    question: str
    options: tuple[str, ...]
    correct_answer: int
    explanation: str

    @classmethod
    def from_dict(cls, data: dict) -> "Question":
        return cls(
            question=data["question"],
            options=tuple(data["options"]),
            correct_answer=data["correctAnswer"],
            explanation=data["explanation"],
        )

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_answer]

    def move_correct_answer(self, index: int) -> "Question":
        """Swap the correct option into slot ``index``."""
        options = list(self.options)
        options[self.correct_answer], options[index] = options[index], options[self.correct_answer]
        return replace(self, options=tuple(options), correct_answer=index)


@dataclass(frozen=True)
class AnswerResult:
    is_correct: bool
    correct_answer: int
    explanation: str
    user_answer: int


@dataclass(frozen=True)
class ScoreResult:
    correct: int
    total: int
    percentage: int


def validate_question(data) -> bool:
    if not isinstance(data, dict):
        return False
    text = data.get("question")
    if not text or not isinstance(text, str):
        return False
    options = data.get("options")
    if not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
        return False
    if any(not opt or not isinstance(opt, str) for opt in options):
        return False
    if len(set(options)) != OPTIONS_PER_QUESTION:
        return False
    answer = data.get("correctAnswer")
    if isinstance(answer, bool) or not isinstance(answer, int):
        return False
    if not 0 <= answer < OPTIONS_PER_QUESTION:
        return False
    explanation = data.get("explanation")
    if not explanation or not isinstance(explanation, str):
        return False
    return True


def extract_json_array(text: str):
    """Parse model output, tolerating code fences and surrounding prose."""
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = _ARRAY_RE.search(text)
        if not match:
            raise QuestionFormatError("No valid JSON array found in AI response") from None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            raise QuestionFormatError("Failed to parse AI response") from None


def parse_questions(payload) -> list[Question]:
    """Validate a raw question list (or model text) into exactly 10 questions."""
    raw = extract_json_array(payload) if isinstance(payload, str) else payload
    if not isinstance(raw, list):
        raise QuestionFormatError("AI response is not a valid array")
    if len(raw) != QUESTIONS_PER_QUIZ:
        raise QuestionFormatError(
            f"AI generated {len(raw)} questions, expected {QUESTIONS_PER_QUIZ}"
        )
    invalid = [str(i + 1) for i, item in enumerate(raw) if not validate_question(item)]
    if invalid:
        raise QuestionFormatError(f"Questions {', '.join(invalid)} have invalid format")
    return [Question.from_dict(item) for item in raw]


def answer_distribution(questions) -> list[int]:
    counts = [0] * OPTIONS_PER_QUESTION
    for q in questions:
        counts[q.correct_answer] += 1
    return counts


def has_fair_distribution(questions) -> bool:
    """No answer index may be correct for more than 40% of the questions."""
    max_allowed = math.ceil(len(questions) * MAX_ANSWER_SHARE)
    return all(count <= max_allowed for count in answer_distribution(questions))


def _next_open_slot(counts: list[int], cursor: int) -> int:
    for step in range(OPTIONS_PER_QUESTION):
        slot = (cursor + step) % OPTIONS_PER_QUESTION
        if counts[slot] < TARGET_DISTRIBUTION[slot]:
            return slot
    raise AssertionError("no under-represented slot while another is over target")


def balance_answers(questions) -> list[Question]:
    """Flatten a skewed correct-answer distribution towards TARGET_DISTRIBUTION.

    Input within one of the target per index comes back unchanged. Otherwise
    each question whose correct index is over target has its correct option
    swapped into the next under-represented slot. Only positions move; every
    question keeps its option strings.
    """
    questions = list(questions)
    if len(questions) != QUESTIONS_PER_QUIZ:
        raise QuestionFormatError(
            f"Expected {QUESTIONS_PER_QUIZ} questions, got {len(questions)}"
        )

    counts = answer_distribution(questions)
    if all(abs(c - t) <= 1 for c, t in zip(counts, TARGET_DISTRIBUTION)):
        return questions

    logger.info("Rebalancing answer distribution %s", counts)
    balanced = []
    cursor = 0
    for q in questions:
        current = q.correct_answer
        if counts[current] > TARGET_DISTRIBUTION[current]:
            slot = _next_open_slot(counts, cursor)
            q = q.move_correct_answer(slot)
            counts[current] -= 1
            counts[slot] += 1
            cursor = (slot + 1) % OPTIONS_PER_QUESTION
        balanced.append(q)

    logger.info("Answer distribution (A, B, C, D): %s", counts)
    return balanced


def mark_answer(questions, index: int, user_answer: int) -> AnswerResult | None:
    if not 0 <= index < len(questions):
        return None
    q = questions[index]
    return AnswerResult(
        is_correct=user_answer == q.correct_answer,
        correct_answer=q.correct_answer,
        explanation=q.explanation,
        user_answer=user_answer,
    )


def score_answers(questions, answers) -> ScoreResult:
    """Percentage of correct answers, rounded half up."""
    if not questions or not answers:
        return ScoreResult(correct=0, total=0, percentage=0)
    correct = sum(
        1 for q, answer in zip(questions, answers) if answer == q.correct_answer
    )
    total = len(questions)
    return ScoreResult(
        correct=correct,
        total=total,
        percentage=math.floor(correct * 100 / total + 0.5),
    )
