"""Keyword-based content analyzer for local development and tests."""

from __future__ import annotations

import json
import re

from vomage.adapters.analysis.base import ContentAnalyzer
from vomage.errors import PipelineError

_POSITIVE_WORDS = ("好", "棒", "开心", "高兴", "快乐", "喜欢", "爱", "美好", "不错", "满意", "happy", "great", "love", "good")
_NEGATIVE_WORDS = ("不好", "难过", "伤心", "生气", "讨厌", "烦", "累", "失望", "sad", "angry", "tired", "bad")
_NEUTRAL_WORDS = ("还行", "一般", "普通", "平常", "正常", "okay", "fine")
_TRANSCRIPT_PATTERN = re.compile(r"<transcript>(.*?)</transcript>", re.DOTALL)


class MockContentAnalyzer(ContentAnalyzer):
    """Scores the transcript embedded in the prompt with small word lists.

    ``reply`` overrides the generated reply verbatim (useful for malformed
    output); ``error`` is raised instead of replying.
    """

    def __init__(self, *, reply: str | None = None, error: PipelineError | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if self.reply is not None:
            return self.reply

        match = _TRANSCRIPT_PATTERN.search(prompt)
        text = match.group(1) if match else prompt
        return json.dumps(_score(text), ensure_ascii=False)


def _score(text: str) -> dict:
    lowered = text.lower()
    positive = sum(1 for word in _POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in _NEGATIVE_WORDS if word in lowered)
    neutral = sum(1 for word in _NEUTRAL_WORDS if word in lowered)

    if positive > negative and positive > neutral:
        mood, confidence = "happy", min(0.9, 0.6 + positive * 0.1)
    elif negative > positive and negative > neutral:
        mood, confidence = "sad", min(0.9, 0.6 + negative * 0.1)
    elif neutral > 0:
        mood, confidence = "neutral", 0.7
    else:
        mood, confidence = "calm", 0.5

    total = positive + negative + neutral
    if total:
        details = {"positive": positive / total, "negative": negative / total, "neutral": neutral / total}
    else:
        details = {"positive": 0.0, "negative": 0.0, "neutral": 1.0}

    return {
        "sentiment": {"mood": mood, "confidence": round(confidence, 2), "details": details, "keywords": []},
        "image_prompt": f"an expressive scene evoking a {mood} mood",
    }


__all__ = ["MockContentAnalyzer"]
