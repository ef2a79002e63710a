import pytest

from trendstream.privacy import InspectionResult, Rule, contains_sensitive_data, inspect


@pytest.mark.parametrize(
    "query",
    [
        "iphone 15 pro",
        "samsung galaxy s23 256gb",
        "кроссовки женские 39 размер",
        "ноутбук 16gb ram 512gb ssd",
        "чехол iphone 14",
    ],
)
def test_inspect_allows_regular_product_queries(query):
    result = inspect(query)
    assert result.sensitive is False
    assert result.rule is Rule.NONE


def test_inspect_detects_email():
    assert inspect("john.doe@example.com") == InspectionResult(True, Rule.EMAIL)


def test_inspect_detects_email_inside_query():
    assert inspect("найти заказ john.doe@example.com") == InspectionResult(True, Rule.EMAIL)


def test_inspect_detects_likely_card_number():
    assert inspect("0000 0000 0000 0000") == InspectionResult(True, Rule.LIKELY_CARD)


def test_inspect_detects_long_digit_run():
    assert inspect("123456789") == InspectionResult(True, Rule.LONG_DIGIT_RUN)


def test_inspect_detects_likely_phone_number():
    assert inspect("12-34-56-78-90") == InspectionResult(True, Rule.LIKELY_PHONE)


def test_inspect_detects_phone_with_marker():
    assert inspect("телефон 12 34 56 78 90") == InspectionResult(True, Rule.LIKELY_PHONE)


def test_inspect_detects_high_digit_ratio():
    assert inspect("заказ 123 456 789 012") == InspectionResult(True, Rule.HIGH_DIGIT_RATIO)


def test_inspect_empty_query_is_not_sensitive():
    assert inspect("   ") == InspectionResult()


def test_eight_digit_run_alone_is_allowed():
    assert inspect("12345678").sensitive is False


def test_contains_sensitive_data():
    assert contains_sensitive_data("user@example.com") is True
    assert contains_sensitive_data("iphone 15 pro") is False