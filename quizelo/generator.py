"""Quiz question generation over an OpenAI-compatible chat completions API."""

import logging
from collections import OrderedDict
from dataclasses import dataclass

import httpx

from .errors import GenerationError, QuestionFormatError
from .questions import (
    QUESTIONS_PER_QUIZ,
    Question,
    balance_answers,
    has_fair_distribution,
    parse_questions,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"
RECENT_QUESTIONS_LIMIT = 100
PROMPT_HISTORY = 5


@dataclass(frozen=True)
class Topic:
    id: str
    title: str
    description: str


TOPICS = (
    Topic("celo-basics", "Celo Basics", "Learn about Celo blockchain fundamentals"),
    Topic("mobile-defi", "Mobile DeFi", "Mobile-first decentralized finance on Celo"),
    Topic("stable-coins", "Stable Coins", "cUSD, cEUR and Celo stablecoins"),
    Topic("regenerative-finance", "ReFi", "Regenerative Finance and climate impact"),
    Topic("celo-governance", "Governance", "Celo governance and community participation"),
    Topic("valora-wallet", "Valora Wallet", "Using Valora and Celo wallets"),
    Topic("celo-development", "Celo Development", "Building dApps on Celo blockchain"),
    Topic("carbon-credits", "Carbon Credits", "Environmental impact and carbon offsetting"),
)


def find_topic(topic_id: str) -> Topic | None:
    for topic in TOPICS:
        if topic.id == topic_id:
            return topic
    return None


CELO_CONTEXT = """\
Celo is a mobile-first, EVM-compatible blockchain focused on financial inclusion.
Stablecoins such as cUSD and cEUR can pay network fees; CELO is the native
governance and staking token. Contracts are written in Solidity. The ecosystem
includes Valora, Ubeswap and Moola Market, and governance is driven by CELO
holders with a focus on regenerative finance."""

SYSTEM_INSTRUCTION = """\
You are a Celo blockchain expert educator. You write unique, varied
multiple choice quiz questions about the Celo ecosystem, spread the correct
answers across options A, B, C and D, and always respond with valid JSON only."""


def build_prompt(topic: Topic, previous: list[str] | None = None) -> str:
    variety = ""
    if previous:
        listed = "\n".join(f"  {i + 1}. {q}" for i, q in enumerate(previous[:PROMPT_HISTORY]))
        variety = (
            f"\n\nYou have generated questions about \"{topic.title}\" before.\n"
            f"Do not repeat or rephrase these previous questions:\n{listed}\n"
            "Create completely new questions from different angles."
        )

    return f"""{CELO_CONTEXT}

Generate exactly {QUESTIONS_PER_QUIZ} multiple choice questions about "{topic.title}" within the Celo ecosystem.

Topic focus: {topic.description}{variety}

Requirements:
- Each question has exactly 4 distinct options
- Aim for 2-3 correct answers at each of A, B, C and D
- Mix beginner, intermediate and advanced difficulty

Format as a JSON array with this exact structure:
[
  {{
    "question": "Clear, specific question about Celo?",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "correctAnswer": 0,
    "explanation": "Why the correct option is right"
  }}
]"""


def extract_text(result) -> str | None:
    """Pull the model's text out of the common response shapes."""
    if not isinstance(result, dict):
        return None
    choices = result.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    content = result.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                return item["text"].strip()
    for key in ("content", "text", "message", "response"):
        value = result.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class QuestionGenerator:
    def __init__(self, api_key: str | None, endpoint: str = DEFAULT_ENDPOINT,
                 model: str = DEFAULT_MODEL, temperature: float = 0.9,
                 max_tokens: int = 4000, timeout: float = 60.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport
        self._recent: dict[str, OrderedDict[str, None]] = {}

    def recent_questions(self, topic: Topic) -> list[str]:
        """Most recent first."""
        seen = self._recent.get(topic.title.lower())
        return list(reversed(seen)) if seen else []

    def _remember(self, topic: Topic, questions: list[Question]) -> None:
        seen = self._recent.setdefault(topic.title.lower(), OrderedDict())
        for q in questions:
            seen.pop(q.question, None)
            seen[q.question] = None
        while len(seen) > RECENT_QUESTIONS_LIMIT:
            seen.popitem(last=False)

    async def _complete(self, prompt: str) -> dict:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise GenerationError(f"AI API error: {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise GenerationError(f"AI API request failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise GenerationError("AI API returned invalid JSON") from e

    async def generate(self, topic: Topic) -> list[Question]:
        """Ten validated questions for ``topic`` with a fair answer spread."""
        if not self.api_key:
            raise GenerationError("AI API key not configured")

        prompt = build_prompt(topic, self.recent_questions(topic))
        result = await self._complete(prompt)
        text = extract_text(result)
        if not text:
            logger.error("Unrecognised AI response: %s", result)
            raise GenerationError("No response received from AI")

        try:
            questions = parse_questions(text)
        except QuestionFormatError as e:
            raise GenerationError(str(e)) from e

        if not has_fair_distribution(questions):
            logger.info("Rebalancing correct answers for %s", topic.id)
            questions = balance_answers(questions)

        self._remember(topic, questions)
        logger.info("Generated %d questions for %s", len(questions), topic.id)
        return questions
