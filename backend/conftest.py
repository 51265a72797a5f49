import json

import pytest

from llm_client import ProviderTimeoutError


class FakeLLM:
    """Stands in for GeminiClient: replays scripted outcomes and records every call."""

    scoring_model = "fake-scoring"
    chat_model = "fake-chat"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else ProviderTimeoutError("no scripted reply")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def scoring_reply(technical=82, communication=75, confidence=90, feedback=None) -> str:
    if feedback is None:
        feedback = [
            {"topic": "APIs", "feedback": "Solid REST design.", "better_answer": "Mention idempotency keys."},
            {"topic": "Databases", "feedback": "Good indexing intuition.", "better_answer": "Discuss composite indexes."},
            {"topic": "Delivery", "feedback": "Clear answers.", "better_answer": "Quantify the impact."},
        ]
    return json.dumps({
        "technical_score": technical,
        "communication_score": communication,
        "confidence_score": confidence,
        "feedback": feedback,
    })


@pytest.fixture
def history():
    return [
        {"role": "assistant", "content": "Hi! I'm your interviewer today. Ready to begin?"},
        {"role": "user", "content": "Yes. I build backend services in Python and Go.", "timestamp": "2026-10-19T10:00:05Z"},
        {"role": "assistant", "content": "How would you design rate limiting for a public API?", "timestamp": "2026-10-19T10:00:20Z"},
    ]
