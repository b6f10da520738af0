from interview.activity_classifier import ActivityClassifier
from interview.engine import build_classifier
from tests.conftest import FakeLLM


def test_keyword_classification(template):
    classifier = build_classifier(template)
    result = classifier.classify("rate limiter for login endpoint")
    assert result["source"] == "keywords"
    assert result["candidates"][0] == {"activity": "HTTP endpoint", "score": 1.0}
    assert classifier.decide(result) == "HTTP endpoint"


def test_ambiguous_description_is_not_decided(template):
    classifier = build_classifier(template)
    result = classifier.classify("a page with a button that calls the api endpoint")
    assert result["candidates"][0]["score"] == 0.5
    assert result["candidates"][0]["activity"] == "HTTP endpoint"
    assert classifier.decide(result) is None


def test_no_keywords_gives_zero_scores(template):
    result = build_classifier(template).classify("make it better")
    assert all(c["score"] == 0.0 for c in result["candidates"])
    assert build_classifier(template).decide(result) is None


def test_llm_result_is_normalized():
    llm = FakeLLM({"Du klassifizierst": {
        "candidates": [
            {"activity": "background job", "score": 0.9},
            {"activity": "Unknown", "score": 0.8},
            {"activity": "HTTP endpoint", "score": "x"},
        ],
        "explain": "queued work",
    }})
    classifier = ActivityClassifier(["HTTP endpoint", "Background job"], {}, llm=llm)
    result = classifier.classify("send mails later")
    assert result["source"] == "llm"
    assert result["candidates"] == [{"activity": "Background job", "score": 0.9}]
    assert classifier.decide(result) == "Background job"


def test_llm_failure_falls_back_to_keywords():
    classifier = ActivityClassifier(
        ["HTTP endpoint", "Background job"],
        {"Background job": ["queue"]},
        llm=FakeLLM({}, fail=True),
    )
    result = classifier.classify("push it onto the queue")
    assert result["source"] == "keywords"
    assert classifier.decide(result) == "Background job"


def test_llm_array_reply_falls_back_to_keywords():
    llm = FakeLLM({"Du klassifizierst": '[{"activity": "Background job", "score": 0.9}]'})
    classifier = ActivityClassifier(
        ["HTTP endpoint", "Background job"],
        {"Background job": ["queue"]},
        llm=llm,
    )
    result = classifier.classify("push it onto the queue")
    assert len(llm.calls) == 1
    assert result["source"] == "keywords"
    assert classifier.decide(result) == "Background job"


def test_llm_candidates_not_a_list_falls_back_to_keywords():
    llm = FakeLLM({"Du klassifizierst": '{"candidates": 5}'})
    classifier = ActivityClassifier(
        ["HTTP endpoint", "Background job"],
        {"HTTP endpoint": ["endpoint"]},
        llm=llm,
    )
    result = classifier.classify("rate limiter for login endpoint")
    assert result["source"] == "keywords"
    assert classifier.decide(result) == "HTTP endpoint"
