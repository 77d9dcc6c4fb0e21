"""
Riddle generation providers.

A provider turns an exclusion list (recently used answers) plus theme and
difficulty settings into a new riddle. Whatever comes back from outside is
run through ``parse_riddle_payload`` and ends up as either a ``ValidRiddle``
or a ``MalformedResponse``; nothing unchecked reaches the game state.
"""
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import openai

from .errors import GenerationUnavailable
from .game import MAX_HINTS, normalize_answer
from .logging_utils import get_logger

logger = get_logger("riddleme.providers")


@dataclass(frozen=True)
class ValidRiddle:
    question: str
    answer: str
    hints: Tuple[str, ...]


@dataclass(frozen=True)
class MalformedResponse:
    reason: str
    raw: str = ""


ProviderResult = Union[ValidRiddle, MalformedResponse]


def extract_json_block(text: str) -> Optional[str]:
    """Pull the outermost {...} out of model output, tolerating code fences and prose."""
    if not text or not text.strip():
        return None
    t = text.strip()
    if t.startswith("```"):
        t = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", t)
        t = re.sub(r"\s*```$", "", t)
    i, j = t.find("{"), t.rfind("}")
    return t[i:j + 1] if i != -1 and j != -1 and j > i else None


def parse_riddle_payload(payload: Any) -> ProviderResult:
    raw = payload if isinstance(payload, str) else ""
    if isinstance(payload, str):
        block = extract_json_block(payload)
        if block is None:
            return MalformedResponse("no JSON object in response", raw)
        try:
            payload = json.loads(block)
        except ValueError as exc:
            return MalformedResponse(f"invalid JSON: {exc}", raw)
    if not isinstance(payload, dict):
        return MalformedResponse("response is not an object", raw)

    question = payload.get("question")
    answer = payload.get("answer")
    hints = payload.get("hints")
    if not isinstance(question, str) or not question.strip():
        return MalformedResponse("missing question", raw)
    if not isinstance(answer, str) or not normalize_answer(answer):
        return MalformedResponse("missing answer", raw)
    if not isinstance(hints, list) or len(hints) != MAX_HINTS:
        return MalformedResponse(f"expected exactly {MAX_HINTS} hints", raw)
    if not all(isinstance(h, str) and h.strip() for h in hints):
        return MalformedResponse("hints must be non-empty strings", raw)
    return ValidRiddle(
        question=question.strip(),
        answer=normalize_answer(answer),
        hints=tuple(h.strip() for h in hints),
    )


class RiddleProvider:
    name = "base"

    def generate(self, exclude_answers: Sequence[str], strict: bool = False) -> ProviderResult:
        raise NotImplementedError


# Offline riddle bank, also used when no API key is configured
RIDDLE_BANK = [
    {
        "question": "I speak without a mouth and hear without ears. I have no body, but I come alive with wind. What am I?",
        "answer": "echo",
        "hints": ["I bounce back", "Sound related", "Mountains have me"],
    },
    {
        "question": "The more you take, the more you leave behind. What am I?",
        "answer": "footsteps",
        "hints": ["Walking related", "You create me", "Found on paths"],
    },
    {
        "question": "I have cities, but no houses. I have mountains, but no trees. I have water, but no fish. What am I?",
        "answer": "map",
        "hints": ["Paper or digital", "Helps navigation", "Shows locations"],
    },
    {
        "question": "What has keys but no locks, space but no room, and you can enter but can't go inside?",
        "answer": "keyboard",
        "hints": ["Computer related", "You type on me", "Has many buttons"],
    },
    {
        "question": "I'm tall when I'm young, and I'm short when I'm old. What am I?",
        "answer": "candle",
        "hints": ["Fire related", "Gives light", "Made of wax"],
    },
    {
        "question": "What has hands but cannot clap?",
        "answer": "clock",
        "hints": ["Tells something", "On the wall", "Has numbers"],
    },
    {
        "question": "What gets wet while drying?",
        "answer": "towel",
        "hints": ["Bathroom item", "Made of cloth", "Absorbs water"],
    },
]


class StaticRiddleProvider(RiddleProvider):
    """Cycles through a fixed bank, skipping excluded answers where it can."""
    name = "static"

    def __init__(self, bank: Optional[List[dict]] = None):
        self.bank = list(bank if bank is not None else RIDDLE_BANK)
        if not self.bank:
            raise ValueError("riddle bank is empty")
        self._cursor = 0

    def generate(self, exclude_answers: Sequence[str], strict: bool = False) -> ProviderResult:
        excluded = {normalize_answer(a) for a in exclude_answers}
        n = len(self.bank)
        choice = self.bank[self._cursor % n]
        for offset in range(n):
            candidate = self.bank[(self._cursor + offset) % n]
            if normalize_answer(candidate.get("answer")) not in excluded:
                choice = candidate
                self._cursor += offset
                break
        self._cursor += 1
        return parse_riddle_payload(choice)


SYSTEM_PROMPT = "You are a careful riddle writer. Return ONE JSON object only. Follow the schema exactly. No prose."


def build_prompt(exclude_answers: Sequence[str], theme: str = "", difficulty: str = "medium", strict: bool = False) -> str:
    lines = [f"Create a completely NEW {difficulty} riddle."]
    if theme:
        lines.append(f"Theme: {theme}.")
    if exclude_answers:
        lines.append("Recently used answers (avoid these):")
        lines.extend(f"- {a}" for a in exclude_answers)
    if strict:
        lines.append(
            "IMPORTANT: a previous attempt reused one of the answers above. "
            "The answer MUST NOT be any of them, not even a plural or synonym."
        )
    lines.append(
        "Requirements:\n"
        "1. An engaging, clever question\n"
        "2. A specific, unambiguous answer (single word or short phrase)\n"
        "3. Exactly three progressive hints (vague, clearer, nearly giving it away)\n"
        "Format your response as JSON:\n"
        '{"question": "...", "answer": "...", "hints": ["hint 1", "hint 2", "hint 3"]}'
    )
    return "\n".join(lines)


def _get_openai_client(http_client=None) -> openai.OpenAI:
    # exactly one HTTP request per generate(), bounded by RIDDLE_TIMEOUT
    return openai.OpenAI(
        api_key=os.getenv("OPENAI_API_KEY"),
        max_retries=0,
        timeout=float(os.getenv("RIDDLE_TIMEOUT", "30")),
        http_client=http_client,
    )


class OpenAIRiddleProvider(RiddleProvider):
    name = "openai"

    def __init__(self, client=None, model: Optional[str] = None, temperature: Optional[float] = None,
                 theme: str = "", difficulty: str = "medium", max_tokens: int = 300):
        if client is None:
            client = _get_openai_client()
        self.client = client
        self.model = model or os.getenv("RIDDLE_MODEL", "gpt-4")
        self.temperature = temperature if temperature is not None else float(os.getenv("RIDDLE_TEMPERATURE", "0.9"))
        self.theme = theme
        self.difficulty = difficulty
        self.max_tokens = max_tokens

    def generate(self, exclude_answers: Sequence[str], strict: bool = False) -> ProviderResult:
        prompt = build_prompt(exclude_answers, self.theme, self.difficulty, strict)
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.RateLimitError as exc:
            logger.warning("provider_rate_limited", extra={"provider": self.name, "error": str(exc)})
            raise GenerationUnavailable("Riddle generation is rate limited, please try again shortly") from exc
        except openai.OpenAIError as exc:
            logger.warning("provider_error", extra={"provider": self.name, "error": str(exc)})
            raise GenerationUnavailable() from exc
        try:
            text = completion.choices[0].message.content or ""
        except (AttributeError, IndexError):
            return MalformedResponse("completion has no message content")
        return parse_riddle_payload(text)


def build_provider_from_env() -> RiddleProvider:
    kind = os.getenv("RIDDLE_PROVIDER", "auto").lower()
    if kind == "auto":
        kind = "openai" if os.getenv("OPENAI_API_KEY") else "static"
    if kind == "static":
        provider: RiddleProvider = StaticRiddleProvider()
    elif kind == "openai":
        provider = OpenAIRiddleProvider(
            theme=os.getenv("RIDDLE_THEME", ""),
            difficulty=os.getenv("RIDDLE_DIFFICULTY", "medium"),
        )
    else:
        raise ValueError(f"unknown RIDDLE_PROVIDER: {kind}")
    logger.info("provider_selected", extra={"provider": provider.name})
    return provider
