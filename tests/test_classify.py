"""
Unit tests for classification validation and re-asking.
"""
import pytest

from conftest import FakeClient, answer, line
from core.exceptions import ClassificationError, LLMError
from core.schema import ApportionMode, Category
from llm.classify import SpendingClassifier, parse_classification

CATEGORIES = [Category(id=1, name="Groceries"), Category(id=2, name="Transport")]


def classify(client, total=75.0, partner="Partner", **kwargs):
    classifier = SpendingClassifier(client=client, **kwargs)
    return classifier.classify("groceries and bus ticket", total, "Demo", partner, CATEGORIES)


def test_parse_classification_valid():
    """Test a conforming payload is parsed."""
    payload = answer(line("shared", "Groceries", 50.0), line("alone", "Transport", 25.0))
    result = parse_classification(payload, 75.0)
    assert len(result.spendings) == 2
    assert result.spendings[0].apportion_mode is ApportionMode.SHARED
    assert not result.is_ambiguity_flagged


def test_parse_classification_within_tolerance():
    """Test small rounding differences are accepted."""
    payload = answer(line("alone", "Groceries", 98.0))
    result = parse_classification(payload, 100.0, tolerance=3.0)
    assert result.total == 98.0


def test_parse_classification_sum_mismatch():
    """Test parts that do not add up to the total are rejected."""
    payload = answer(line("alone", "Groceries", 50.0))
    with pytest.raises(ClassificationError, match="sum to 50.00, expected 75.00"):
        parse_classification(payload, 75.0)


@pytest.mark.parametrize("payload", [
    None,
    [],
    "not json",
    {"spendings": "nope"},
    {"spendings": [{"apportion_mode": "split", "category": "Groceries", "amount": 75}]},
    {"ambiguity_flag": ""},
])
def test_parse_classification_malformed(payload):
    """Test malformed payloads raise ClassificationError."""
    with pytest.raises(ClassificationError):
        parse_classification(payload, 75.0)


def test_classify_first_answer():
    """Test a valid first answer is returned without re-asking."""
    client = FakeClient(answer(line("shared", "Groceries", 50.0), line("alone", "Transport", 25.0)))
    result = classify(client)
    assert result.total == 75.0
    assert len(client.calls) == 1


def test_classify_reasks_on_malformed_answer():
    """Test a malformed answer is re-asked."""
    client = FakeClient(
        {"oops": True},
        answer(line("alone", "Groceries", 50.0)),
        answer(line("shared", "Groceries", 50.0), line("alone", "Transport", 25.0)),
    )
    result = classify(client)
    assert len(result.spendings) == 2
    assert len(client.calls) == 3


def test_classify_reasks_on_content_parse_error():
    """Test an unparseable answer is re-asked."""
    client = FakeClient(
        ClassificationError("Failed to parse LLM response as JSON"),
        answer(line("alone", "Groceries", 75.0)),
    )
    result = classify(client)
    assert result.total == 75.0
    assert len(client.calls) == 2


def test_classify_gives_up_after_max_attempts():
    """Test repeated malformed answers fail the classification."""
    client = FakeClient(answer(line("alone", "Groceries", 10.0)))
    with pytest.raises(ClassificationError, match="after 2 attempts"):
        classify(client, max_attempts=2)
    assert len(client.calls) == 2


def test_classify_does_not_reask_on_service_error():
    """Test service errors propagate without re-asking."""
    client = FakeClient(LLMError("API request timed out"), answer(line("alone", "Groceries", 75.0)))
    with pytest.raises(LLMError):
        classify(client)
    assert len(client.calls) == 1


def test_classify_without_partner_mentions_it():
    client = FakeClient(answer(line("alone", "Transport", 75.0)))
    classify(client, partner=None)
    assert "No partner is involved." in client.calls[0]
