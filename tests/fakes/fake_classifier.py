"""Scripted classifiers for testing: no LLM calls needed."""

from __future__ import annotations

import time


class ScriptedClassifier:
    """Replies per question text, then from a call sequence, then a default."""

    def __init__(
        self,
        *,
        default: str = "Yes",
        by_question: dict[str, str] | None = None,
        replies: list[str] | None = None,
    ) -> None:
        self._default = default
        self._by_question = dict(by_question or {})
        self._replies = list(replies or [])
        self.calls: list[tuple[str, str]] = []

    def classify(self, question: str, excerpt: str) -> str:
        self.calls.append((question, excerpt))
        if question in self._by_question:
            return self._by_question[question]
        if self._replies:
            return self._replies.pop(0)
        return self._default


class FailingClassifier:
    """Raises on every call, like an unreachable provider."""

    def __init__(self, message: str = "classifier unavailable") -> None:
        self._message = message
        self.calls = 0

    def classify(self, question: str, excerpt: str) -> str:
        self.calls += 1
        raise RuntimeError(self._message)


class SlowClassifier:
    def __init__(self, delay_s: float, reply: str = "Yes") -> None:
        self._delay = delay_s
        self._reply = reply

    def classify(self, question: str, excerpt: str) -> str:
        time.sleep(self._delay)
        return self._reply
