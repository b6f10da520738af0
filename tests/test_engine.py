import os

import pytest

from app.models import SeedInput
from interview.decision_state import FactSource
from interview.engine import InterviewEngine, build_classifier
from interview.errors import (
    AbandonedSessionError,
    IncompleteStateError,
    InvalidAnswerError,
    RoundLimitExceededError,
    UnresolvableSeedError,
)
from interview.question_generator import QuestionGenerator
from interview.seed import RECORD_PATTERN
from tests.conftest import FakeLLM, scripted_answerer
from tests.test_context_scanner import _laravel_project

RATE_LIMITER = "rate limiter for login endpoint"


class RecordingAnswerer:
    def __init__(self, overrides):
        self.answer = scripted_answerer(overrides)
        self.rounds = []
        self.states = []

    def __call__(self, interview_round, state):
        self.rounds.append(interview_round)
        self.states.append(state)
        return self.answer(interview_round, state)


def test_rate_limiter_description_completes_in_one_round(engine, rate_limiter_answers):
    answerer = RecordingAnswerer(rate_limiter_answers)
    rendered = engine.run_session(SeedInput.description(RATE_LIMITER), answerer)

    assert len(answerer.rounds) == 1
    assert rendered.sections == [
        "Flow Overview", "Technical Decisions", "Endpoints",
        "Components", "Implementation Tasks", "Tests",
    ]
    assert "- **Summary:** rate limiter for login endpoint" in rendered.text
    assert "- **Approach:** sliding window" in rendered.text
    assert "- **Storage:** Redis-backed" in rendered.text
    assert "- **Constraints:** 5/min" in rendered.text
    assert "## Migrations" not in rendered.text
    assert rendered.target_path == rate_limiter_answers["output_path"]
    with open(rendered.target_path, encoding="utf-8") as f:
        assert f.read() == rendered.text


def test_activity_is_inferred_before_first_round(engine):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    assert state.value("activity_kind") == "HTTP endpoint"
    assert state.facts["activity_kind"].source == FactSource.INFERRED
    question_ids = [q.id for q in engine.next_round(state).questions]
    assert "q_activity_kind" not in question_ids
    assert "q_feature_summary" not in question_ids
    assert "q_http_method" in question_ids


def test_derived_tasks_in_document(engine, rate_limiter_answers):
    rendered = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))
    assert "1. Implement Form Request" in rendered.text
    assert "4. Register route POST /api/login" in rendered.text
    assert "5. Write Feature tests, Unit tests (Pest) covering: burst at window boundary" in rendered.text


def test_missing_reference_fails_before_any_question(engine, tmp_path):
    answerer = RecordingAnswerer({})
    with pytest.raises(UnresolvableSeedError):
        engine.run_session(SeedInput.reference(str(tmp_path / "missing.md")), answerer)
    assert answerer.rounds == []
    assert os.listdir(tmp_path) == []


def test_resubmitted_document_is_reproduced(engine, rate_limiter_answers):
    first = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))

    state = engine.begin_session(SeedInput.reference(first.target_path))
    assert engine.next_round(state) is None
    assert engine.render(state).text == first.text


def test_document_without_record_is_read_from_visible_lines(engine, rate_limiter_answers):
    first = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))
    with open(first.target_path, "w", encoding="utf-8") as f:
        f.write(RECORD_PATTERN.sub("", first.text))

    state = engine.begin_session(SeedInput.reference(first.target_path))
    assert state.value("storage") == "Redis-backed"
    assert state.value("components") == ["Controller", "Form Request", "Action class"]
    assert engine.next_round(state) is None
    assert engine.render(state).text == first.text


def test_no_render_before_done(engine):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    with pytest.raises(IncompleteStateError) as exc:
        engine.render(state)
    assert "approach" in exc.value.missing


def test_render_is_deterministic(engine, rate_limiter_answers):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    interview_round = engine.next_round(state)
    state = engine.apply_answers(state, scripted_answerer(rate_limiter_answers)(interview_round, state), interview_round)
    assert engine.render(state).text == engine.render(state).text


def test_answered_questions_are_not_asked_again(engine, rate_limiter_answers):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    first = engine.next_round(state)
    all_answers = scripted_answerer(rate_limiter_answers)(first, state)
    partial = dict(list(all_answers.items())[:3])

    next_state = engine.apply_answers(state, partial, first)
    second = engine.next_round(next_state)

    assert next_state.covers(state)
    assert second.number == 2
    assert not set(partial) & {q.id for q in second.questions}
    assert all(not next_state.is_resolved(q.field_id) for q in second.questions)


def test_state_only_grows(engine, rate_limiter_answers):
    answers = dict(rate_limiter_answers, schema_changes="Yes", tables="rate_limits(key, hits)")
    answerer = RecordingAnswerer(answers)
    engine.run_session(SeedInput.description(RATE_LIMITER), answerer)
    for before, after in zip(answerer.states, answerer.states[1:]):
        assert after.covers(before)
        assert len(after.facts) > len(before.facts)


def test_migrations_follow_schema_changes(engine, rate_limiter_answers):
    answers = dict(rate_limiter_answers, schema_changes="Yes", tables="rate_limits(key, hits)")
    answerer = RecordingAnswerer(answers)
    rendered = engine.run_session(SeedInput.description(RATE_LIMITER), answerer)

    assert len(answerer.rounds) == 2
    assert "q_tables" not in [q.id for q in answerer.rounds[0].questions]
    assert [q.id for q in answerer.rounds[1].questions] == ["q_tables", "q_rollback"]
    assert "## Migrations" in rendered.text
    assert "1. Write migration: rate_limits(key, hits)" in rendered.text


def test_utility_script_has_no_endpoints(engine, rate_limiter_answers):
    answerer = RecordingAnswerer(rate_limiter_answers)
    rendered = engine.run_session(
        SeedInput.description("one-off script to import file of users into the CRM"), answerer
    )
    asked = [q.field_id for r in answerer.rounds for q in r.questions]
    assert "http_method" not in asked
    assert "Endpoints" not in rendered.sections
    assert "- **Activity:** Utility script" in rendered.text


def test_uncertain_activity_is_asked_with_recommendation(engine):
    state = engine.begin_session(SeedInput.description("a page with a button that calls the api endpoint"))
    assert not state.is_resolved("activity_kind")
    interview_round = engine.next_round(state)
    question = interview_round.by_id()["q_activity_kind"]
    assert question.recommended() == ["HTTP endpoint"]
    assert "q_http_method" not in interview_round.by_id()


def test_abandoned_session_writes_nothing(engine, tmp_path):
    path = tmp_path / "prune.md"
    path.write_bytes(b"Nightly queue job that prunes sessions.\n")
    with pytest.raises(AbandonedSessionError):
        engine.run_session(SeedInput.reference(str(path)), lambda r, s: None)
    assert path.read_bytes() == b"Nightly queue job that prunes sessions.\n"
    assert os.listdir(tmp_path) == ["prune.md"]


def _edit_document(path, old, new):
    with open(path, encoding="utf-8") as f:
        text = f.read()
    assert old in text
    with open(path, "w", encoding="utf-8") as f:
        f.write(text.replace(old, new))


def test_edited_document_keeps_visible_edit(engine, rate_limiter_answers):
    first = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))
    _edit_document(first.target_path, "- **Storage:** Redis-backed", "- **Storage:** Database")

    answerer = RecordingAnswerer({})
    second = engine.run_session(SeedInput.reference(first.target_path), answerer)

    assert answerer.rounds == []
    assert "- **Storage:** Database" in second.text
    assert "Redis-backed" not in second.text
    with open(first.target_path, encoding="utf-8") as f:
        assert "- **Storage:** Database" in f.read()


def test_edited_condition_opens_dependent_fields(engine, rate_limiter_answers):
    first = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))
    _edit_document(first.target_path, "- **Schema changes:** No", "- **Schema changes:** Yes")

    state = engine.begin_session(SeedInput.reference(first.target_path))
    assert state.value("schema_changes") == "Yes"
    assert [q.id for q in engine.next_round(state).questions] == ["q_tables", "q_rollback"]


def test_deleted_or_invalid_lines_are_asked_again(engine, rate_limiter_answers):
    first = engine.run_session(SeedInput.description(RATE_LIMITER), scripted_answerer(rate_limiter_answers))
    _edit_document(first.target_path, "- **Constraints:** 5/min\n", "")
    _edit_document(first.target_path, "- **Schema changes:** No", "- **Schema changes:** Maybe")

    state = engine.begin_session(SeedInput.reference(first.target_path))
    asked = [q.field_id for q in engine.next_round(state).questions]
    assert asked == ["constraints", "schema_changes"]
    assert state.value("storage") == "Redis-backed"


def test_apply_answers_takes_round_by_keyword(engine, rate_limiter_answers):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    interview_round = engine.next_round(state)
    answers = scripted_answerer(rate_limiter_answers)(interview_round, state)
    state = engine.apply_answers(state, answers, interview_round=interview_round)
    assert state.round_number == interview_round.number
    assert engine.next_round(state) is None


def test_round_limit(template):
    engine = InterviewEngine(template, max_rounds=2)
    rounds = []
    with pytest.raises(RoundLimitExceededError) as exc:
        engine.run_session(SeedInput.description(RATE_LIMITER), lambda r, s: rounds.append(r) or {})
    assert len(rounds) == 2
    assert "approach" in exc.value.open_fields
    assert isinstance(exc.value, AbandonedSessionError)


def test_invalid_answers_are_rejected(engine):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    interview_round = engine.next_round(state)
    with pytest.raises(InvalidAnswerError):
        engine.apply_answers(state, {"q_schema_changes": "Maybe"}, interview_round)
    with pytest.raises(InvalidAnswerError):
        engine.apply_answers(state, {"q_unknown": "x"}, interview_round)
    with pytest.raises(InvalidAnswerError):
        engine.apply_answers(state, {"q_approach": "  "}, interview_round)
    with pytest.raises(InvalidAnswerError):
        engine.apply_answers(state, {"q_http_method": ["GET", "POST"]}, interview_round)


def test_answers_are_normalized(engine):
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))
    state = engine.apply_answers(state, {
        "q_components": "controller, model, Rate limiter service",
        "q_schema_changes": ["no"],
        "q_feature_summary": "something else",
    })
    assert state.value("components") == ["Controller", "Model", "Rate limiter service"]
    assert state.value("schema_changes") == "No"
    assert state.value("feature_summary") == RATE_LIMITER
    assert state.round_number == 1


def test_codebase_context_is_used(engine, tmp_path):
    root = tmp_path / "app"
    root.mkdir()
    _laravel_project(root, {"laravel/framework": "^11.0", "laravel/sanctum": "^4.0", "pestphp/pest": "^2.0"})
    state = engine.begin_session(SeedInput.description(RATE_LIMITER), target_root=str(root))

    assert state.facts["test_framework"].source == FactSource.CONTEXT
    assert state.context["framework"] == "Laravel"
    questions = engine.next_round(state).by_id()
    assert "q_test_framework" not in questions
    assert questions["q_authentication"].recommended() == ["API token (Sanctum)"]
    assert "Controller, Model" in questions["q_components"].hint


def test_llm_topics_are_asked_and_reproduced(template, rate_limiter_answers):
    llm = FakeLLM({"List at most": {"topics": [{
        "id": "algorithm",
        "label": "Algorithm",
        "question": "Which rate limiting algorithm?",
        "options": [{"label": "Sliding window"}, {"label": "Token bucket"}],
        "recommended": "Sliding window",
    }]}})
    engine = InterviewEngine(
        template,
        question_generator=QuestionGenerator(template, llm=llm),
        classifier=build_classifier(template, llm=llm),
    )
    answerer = RecordingAnswerer(dict(rate_limiter_answers, topic_algorithm="Token bucket"))
    rendered = engine.run_session(SeedInput.description(RATE_LIMITER), answerer)

    assert "q_topic_algorithm" in answerer.rounds[0].by_id()
    assert "- **Algorithm:** Token bucket" in rendered.text

    state = engine.begin_session(SeedInput.reference(rendered.target_path))
    assert engine.next_round(state) is None
    assert engine.render(state).text == rendered.text


def test_malformed_llm_replies_do_not_stop_the_session(template):
    llm = FakeLLM({
        "Du klassifizierst": '{"candidates": 5}',
        "List at most": {"topics": [{"id": "algo", "label": "Algorithm", "question": "Which?", "options": 3}]},
    })
    engine = InterviewEngine(
        template,
        question_generator=QuestionGenerator(template, llm=llm),
        classifier=build_classifier(template, llm=llm),
    )
    state = engine.begin_session(SeedInput.description(RATE_LIMITER))

    assert state.value("activity_kind") == "HTTP endpoint"
    assert state.classification["source"] == "keywords"
    assert state.extra_fields == {}
    assert engine.next_round(state) is not None
