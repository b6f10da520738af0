from app.models import SeedInput
from interview.decision_state import DecisionState, Fact, FactSource, is_filled


def _state() -> DecisionState:
    return DecisionState(seed=SeedInput.description("rate limiter"), seed_text="rate limiter")


def test_with_facts_returns_new_state():
    state = _state()
    new_state = state.with_facts([Fact(field_id="storage", value="Redis")])
    assert not state.is_resolved("storage")
    assert new_state.value("storage") == "Redis"


def test_existing_fact_wins_on_conflict():
    state = _state().with_facts([Fact(field_id="storage", value="Redis", source=FactSource.CONTEXT)])
    state = state.with_facts([Fact(field_id="storage", value="Database")])
    assert state.value("storage") == "Redis"
    assert state.facts["storage"].source == FactSource.CONTEXT


def test_empty_values_are_not_facts():
    state = _state().with_facts([
        Fact(field_id="approach", value="   "),
        Fact(field_id="components", value=[]),
    ])
    assert state.facts == {}


def test_covers_is_superset_check():
    before = _state().with_facts([Fact(field_id="approach", value="token bucket")])
    after = before.with_facts([Fact(field_id="storage", value="Redis")])
    assert after.covers(before)
    assert not before.covers(after)


def test_with_round_tracks_asked_questions_once():
    state = _state().with_round(1, ["q_a", "q_b"]).with_round(2, ["q_b", "q_c"])
    assert state.round_number == 2
    assert state.asked == ["q_a", "q_b", "q_c"]


def test_extra_fields_are_not_replaced():
    state = _state().with_extra_fields({"topic_algo": {"label": "Algorithm"}})
    state = state.with_extra_fields({"topic_algo": {"label": "Other"}})
    assert state.extra_fields["topic_algo"]["label"] == "Algorithm"


def test_is_filled():
    assert is_filled("x")
    assert is_filled(["", "y"])
    assert not is_filled(None)
    assert not is_filled("")
    assert not is_filled([" "])
