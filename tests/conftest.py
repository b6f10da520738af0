import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import DEFAULT_TEMPLATE_PATH  # noqa: E402
from app.llm.mistral_client import LLMReply  # noqa: E402
from app.models import InterviewRound  # noqa: E402
from interview.decision_state import DecisionState  # noqa: E402
from interview.engine import InterviewEngine  # noqa: E402
from interview.repo import TemplateRepo  # noqa: E402
from interview.template_schema import DocumentTemplate  # noqa: E402


class FakeLLM:
    """Antwortet mit vorbereiteten JSON-Payloads, ausgewählt über ein Stichwort im System-Prompt."""

    def __init__(self, responses: Dict[str, Any], fail: bool = False):
        self.responses = responses
        self.fail = fail
        self.calls: List[List[Dict[str, str]]] = []

    def complete(self, messages, temperature=0.2, max_tokens=None, json_mode=None):
        self.calls.append(messages)
        if self.fail:
            raise RuntimeError("LLM nicht erreichbar")
        system = messages[0]["content"]
        for marker, payload in self.responses.items():
            if marker in system:
                content = payload if isinstance(payload, str) else json.dumps(payload)
                return LLMReply(content=content, model="fake")
        return LLMReply(content="{}", model="fake")


def scripted_answerer(overrides: Dict[str, Any]) -> Callable[[InterviewRound, DecisionState], Dict[str, Any]]:
    """Beantwortet jede Frage mit dem Override oder sonst mit der Empfehlung."""

    def answer(interview_round: InterviewRound, state: DecisionState) -> Dict[str, Any]:
        answers = {}
        for question in interview_round.questions:
            if question.field_id in overrides:
                answers[question.id] = overrides[question.field_id]
            elif question.recommended():
                rec = question.recommended()
                answers[question.id] = rec if question.allow_multiple else rec[0]
            else:
                answers[question.id] = f"answer for {question.field_id}"
        return answers

    return answer


@pytest.fixture
def template() -> DocumentTemplate:
    return DocumentTemplate(TemplateRepo(DEFAULT_TEMPLATE_PATH))


@pytest.fixture
def engine(template: DocumentTemplate) -> InterviewEngine:
    return InterviewEngine(template)


@pytest.fixture
def rate_limiter_answers(tmp_path: Path) -> Dict[str, Any]:
    return {
        "approach": "sliding window",
        "storage": "Redis-backed",
        "constraints": "5/min",
        "schema_changes": "No",
        "happy_path": "Count attempts per IP and reject when over the limit",
        "route_path": "/api/login",
        "edge_cases": "burst at window boundary",
        "output_path": str(tmp_path / "docs" / "rate-limiter.md"),
    }
