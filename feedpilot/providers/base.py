"""
providers/base.py
=================
The AI capability set shared by every backend.

A backend only has to implement `complete(prompt, max_tokens)`: one prompt in,
one text answer out. Batch summaries, tags, relevance scores and style labels
are built on top of it here, with prompts from prompts.py and strict parsing of
the answers. Anything missing from an answer comes back as a per-item error,
anything unreadable raises ProviderError. No value is ever made up.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..errors import ProviderError
from ..models import LengthCategory, StyleType, Tone
from . import prompts

MAX_TAGS = 5
MAX_TAG_CHARS = 50
MIN_TAG_CONTENT = 50
# Answer for every article when there are no interests to judge against
NEUTRAL_SCORE = 0.5


@dataclass
class ArticleForSummary:
    id: str
    title: str
    content: str


@dataclass
class SummaryResult:
    id: str
    summary: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.summary is not None


@dataclass
class ArticleForScoring:
    id: str
    text: str


@dataclass
class ScoreResult:
    id: str
    score: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.score is not None


@dataclass
class StyleResult:
    style_type: str
    tone: str
    length_category: str

    @classmethod
    def parse(cls, raw: str) -> "StyleResult":
        """Strict parse of the classifier's JSON answer; out-of-vocabulary values raise."""
        try:
            data = json.loads(strip_json_fences(raw))
        except json.JSONDecodeError as e:
            raise ProviderError(f"Style answer is not JSON: {raw[:200]!r}") from e
        if not isinstance(data, dict):
            raise ProviderError(f"Style answer is not an object: {raw[:200]!r}")

        def pick(key: str, enum_cls) -> str:
            value = str(data.get(key) or "").strip().lower()
            allowed = {m.value for m in enum_cls}
            if value not in allowed:
                raise ProviderError(f"Invalid {key} {value!r}; expected one of {sorted(allowed)}")
            return value

        return cls(
            style_type=pick("style_type", StyleType),
            tone=pick("tone", Tone),
            length_category=pick("length_category", LengthCategory),
        )


# --- Answer parsing ---

_ID_LINE_RE = re.compile(r"^\s*[-*]*\s*\*{0,2}\[([^\]]+)\]\*{0,2}\s*:\s*(.*)$")
_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def parse_id_lines(text: str) -> Dict[str, str]:
    """`[ID]: value` lines -> {ID: value}; other lines are ignored."""
    out: Dict[str, str] = {}
    for line in text.splitlines():
        m = _ID_LINE_RE.match(line)
        if not m:
            continue
        value = m.group(2).strip()
        if value:
            out[m.group(1).strip()] = value
    return out


def parse_score(value: str) -> Optional[float]:
    """'85' -> 0.85. Values outside 0-100 are clamped; non-numbers give None."""
    m = _NUMBER_RE.match(value)
    if not m:
        return None
    return max(0.0, min(100.0, float(m.group(1)))) / 100.0


def parse_tags(text: str) -> List[str]:
    tags: List[str] = []
    for piece in text.replace("\n", ",").split(","):
        tag = piece.strip().strip("#*.\"'").strip().lower()
        if tag and len(tag) < MAX_TAG_CHARS and tag not in tags:
            tags.append(tag)
        if len(tags) == MAX_TAGS:
            break
    return tags


def strip_json_fences(text: str) -> str:
    text = text.strip()
    m = _JSON_FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


class AIProvider(ABC):
    name = "base"

    def __init__(self, language: str = "English"):
        self.language = language

    @abstractmethod
    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        """Send one prompt, return the answer text. Raises ProviderError."""

    async def aclose(self) -> None:
        return None

    async def batch_summarize(self, articles: Sequence[ArticleForSummary]) -> List[SummaryResult]:
        if not articles:
            return []
        answer = await self.complete(
            prompts.batch_summary_prompt(articles, self.language),
            max_tokens=min(8192, 200 * len(articles) + 256),
        )
        found = parse_id_lines(answer)
        return [
            SummaryResult(id=a.id, summary=found[a.id])
            if a.id in found
            else SummaryResult(id=a.id, error="Summary not found in response")
            for a in articles
        ]

    async def extract_tags(self, content: str) -> List[str]:
        if len(content.strip()) < MIN_TAG_CONTENT:
            return []
        answer = await self.complete(prompts.tags_prompt(content), max_tokens=100)
        return parse_tags(answer)

    async def batch_score_relevance(self, articles: Sequence[ArticleForScoring],
                                    interests: Sequence[str]) -> List[ScoreResult]:
        if not articles:
            return []
        if not interests:
            return [ScoreResult(id=a.id, score=NEUTRAL_SCORE) for a in articles]
        answer = await self.complete(
            prompts.batch_score_prompt(articles, interests),
            max_tokens=min(4096, 16 * len(articles) + 64),
        )
        found = parse_id_lines(answer)
        results: List[ScoreResult] = []
        for a in articles:
            score = parse_score(found[a.id]) if a.id in found else None
            if score is None:
                results.append(ScoreResult(id=a.id, error="Score not found in response"))
            else:
                results.append(ScoreResult(id=a.id, score=score))
        return results

    async def classify_style(self, content: str) -> StyleResult:
        answer = await self.complete(prompts.style_prompt(content), max_tokens=100)
        return StyleResult.parse(answer)
