"""AI-assisted riddle operations: hints, generation, and answer validation.

Wraps :class:`~bergvlei.integrations.gemini_client.GeminiClient` with fixed
prompt templates and parses the delimited text the model returns.  Every
failure (transport, configuration, or parsing) is raised as
:class:`AIServiceError`; callers decide whether to surface it or degrade.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bergvlei.integrations.gemini_client import GeminiClient, GeminiError

logger = logging.getLogger(__name__)

_DIFFICULTY_DESCRIPTIONS = {
    "EASY": "simple and straightforward, suitable for beginners",
    "MEDIUM": "moderately challenging, requires some thinking",
    "HARD": "very challenging and cryptic, for experienced players",
    "EXPERT": "extremely difficult, requires deep lateral thinking",
}

_RIDDLE_FORMAT = """Provide your response in the following format:
RIDDLE: [the riddle text]
ANSWER: [the answer]
HINT1: [first subtle hint]
HINT2: [second more revealing hint]
HINT3: [third most revealing hint but still not giving away the answer]
CATEGORY: [single word category like Nature, Logic, WordPlay, etc.]

Make the riddle creative, engaging, and fun to solve. Ensure hints progressively reveal more information."""

_RIDDLE_PATTERNS = {
    "question": re.compile(r"RIDDLE:\s*(.+?)(?=\nANSWER:)", re.S),
    "answer": re.compile(r"ANSWER:\s*(.+?)(?=\nHINT1:)", re.S),
    "hint1": re.compile(r"HINT1:\s*(.+?)(?=\nHINT2:)", re.S),
    "hint2": re.compile(r"HINT2:\s*(.+?)(?=\nHINT3:)", re.S),
    "hint3": re.compile(r"HINT3:\s*(.+?)(?=\nCATEGORY:|$)", re.S),
}
_CATEGORY_PATTERN = re.compile(r"CATEGORY:\s*(.+?)$", re.S)


class AIServiceError(Exception):
    """Raised when an AI operation cannot produce a usable result."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class AIHint:
    hint: str
    confidence: float


@dataclass
class GeneratedRiddle:
    question: str
    answer: str
    hints: list[str] = field(default_factory=list)
    category: str = "General"


@dataclass
class AnswerVerdict:
    is_correct: bool
    similarity: float
    feedback: str | None = None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def normalize_answer(answer: str) -> str:
    return answer.strip().casefold()


def calculate_hint_confidence(hint: str, previous_hint_count: int) -> float:
    """Heuristic quality score for a generated hint, clamped to [0, 1]."""
    confidence = 0.7
    length = len(hint)
    if 20 <= length <= 100:
        confidence += 0.15
    elif length < 10 or length > 200:
        confidence -= 0.1
    confidence += min(previous_hint_count * 0.05, 0.15)
    return max(0.0, min(1.0, confidence))


def parse_generated_riddle(text: str, fallback_category: str | None = None) -> GeneratedRiddle:
    """Parse the ``RIDDLE:/ANSWER:/HINT1..3:/CATEGORY:`` block.

    Raises AIServiceError if any required section is missing.
    """
    matches = {}
    for name, pattern in _RIDDLE_PATTERNS.items():
        match = pattern.search(text)
        if match is None or not match.group(1).strip():
            raise AIServiceError(f"Failed to parse AI riddle response: missing {name}")
        matches[name] = match.group(1).strip()

    category_match = _CATEGORY_PATTERN.search(text)
    if category_match and category_match.group(1).strip():
        category = category_match.group(1).strip()
    else:
        category = fallback_category or "General"

    return GeneratedRiddle(
        question=matches["question"],
        answer=matches["answer"],
        hints=[matches["hint1"], matches["hint2"], matches["hint3"]],
        category=category,
    )


# ---------------------------------------------------------------------------
# AIService
# ---------------------------------------------------------------------------

class AIService:
    def __init__(self, client: GeminiClient):
        self.client = client

    async def _generate(self, prompt: str) -> str:
        try:
            return await self.client.generate_text(prompt)
        except GeminiError as exc:
            logger.warning("Gemini call failed: %s", exc)
            raise AIServiceError(str(exc)) from exc

    async def generate_hint(
        self,
        riddle: str,
        answer: str,
        previous_hints: list[str],
        difficulty: str,
    ) -> AIHint:
        """Generate the next hint, more revealing than *previous_hints*."""
        prompt = (
            "You are helping a player solve a riddle. Generate a helpful hint "
            "that guides them toward the answer without giving it away directly.\n"
            "\n"
            f'Riddle: "{riddle}"\n'
            f'Answer: "{answer}"\n'
            f"Difficulty: {difficulty}\n"
        )
        if previous_hints:
            numbered = "\n".join(f"{i + 1}. {h}" for i, h in enumerate(previous_hints))
            prompt += f"\nPrevious hints already given:\n{numbered}\n"
            prompt += (
                "\nProvide the next hint that is slightly more revealing than the "
                "previous ones, but still requires thinking."
            )
        else:
            prompt += "\nThis is the first hint. Make it subtle and thought-provoking."
        prompt += (
            "\n\nProvide ONLY the hint text, nothing else. "
            "Keep it concise (1-2 sentences)."
        )

        hint = await self._generate(prompt)
        return AIHint(
            hint=hint,
            confidence=calculate_hint_confidence(hint, len(previous_hints)),
        )

    async def generate_riddle(
        self,
        difficulty: str = "MEDIUM",
        category: str | None = None,
        custom_answer: str | None = None,
    ) -> GeneratedRiddle:
        """Create a fresh riddle, optionally built around *custom_answer*."""
        description = _DIFFICULTY_DESCRIPTIONS.get(difficulty, _DIFFICULTY_DESCRIPTIONS["MEDIUM"])
        prompt = f"Create a new riddle with {difficulty} difficulty ({description})."
        if category:
            prompt += f"\nCategory: {category}"
        if custom_answer:
            prompt += (
                f'\nThe answer to the riddle MUST be exactly: "{custom_answer}". '
                "Write the riddle so that this is the only sensible answer."
            )
        prompt += f"\n\n{_RIDDLE_FORMAT}"

        text = await self._generate(prompt)
        riddle = parse_generated_riddle(text, fallback_category=category)
        if custom_answer:
            riddle.answer = custom_answer.strip()
        return riddle

    async def validate_answer(self, user_answer: str, correct_answer: str) -> AnswerVerdict:
        """Fuzzy-match *user_answer* against *correct_answer*.

        Exact normalized matches short-circuit without calling the model.
        """
        if normalize_answer(user_answer) == normalize_answer(correct_answer):
            return AnswerVerdict(is_correct=True, similarity=1.0)

        prompt = (
            "You are validating a riddle answer. Determine if the user's answer "
            "is correct or close enough.\n"
            "\n"
            f'Correct answer: "{correct_answer}"\n'
            f'User\'s answer: "{user_answer}"\n'
            "\n"
            "Consider:\n"
            "- Spelling variations\n"
            "- Synonyms or equivalent phrases\n"
            "- Minor differences in wording\n"
            "\n"
            "Respond with ONLY one of these options:\n"
            "- CORRECT (if the answer is right or very close)\n"
            "- CLOSE (if the answer shows understanding but isn't quite right)\n"
            "- WRONG (if the answer is incorrect)"
        )
        verdict = set(re.findall(r"[A-Z]+", (await self._generate(prompt)).upper()))

        if "CORRECT" in verdict:
            return AnswerVerdict(is_correct=True, similarity=0.9, feedback="Great job!")
        if "CLOSE" in verdict:
            return AnswerVerdict(
                is_correct=False, similarity=0.7, feedback="You're very close! Try again."
            )
        return AnswerVerdict(
            is_correct=False, similarity=0.3, feedback="Not quite right. Keep thinking!"
        )
