from decimal import Decimal

import pytest

from ledger.classification import EventClassifier, normalize_code
from ledger.config import LedgerSettings
from ledger.errors import UnknownEventType
from ledger.models import EventType


@pytest.mark.parametrize(
    "code,expected",
    [
        ("Selling", EventType.SELLING),
        ("selling", EventType.SELLING),
        ("AdjIn", EventType.ADJ_IN),
        ("1", EventType.FULL_CLEAR),
        (5, EventType.TRANSFER),
        (9.0, EventType.CONVERSION),
        (" 11 ", EventType.STOCK_RETURN),
        ("7", EventType.CLEAR_WITH_LORRY),
    ],
)
def test_classify_known_codes(code, expected, ledger_settings) -> None:
    assert EventClassifier(ledger_settings).classify(code) is expected


@pytest.mark.parametrize("code", ["Mystery", "10", None, float("nan"), ""])
def test_classify_unknown_raises(code, ledger_settings) -> None:
    with pytest.raises(UnknownEventType) as info:
        EventClassifier(ledger_settings).classify(code)
    assert info.value.code is code


def test_classification_table_is_configurable() -> None:
    custom = LedgerSettings(classification={"Sale": EventType.SELLING, "10": EventType.WASTAGE})
    classifier = EventClassifier(custom)
    assert classifier.classify("Sale") is EventType.SELLING
    assert classifier.classify(10) is EventType.WASTAGE
    with pytest.raises(UnknownEventType):
        classifier.classify("Selling")


@pytest.mark.parametrize(
    "event_type,qty,expected",
    [
        (EventType.SELLING, "20", "-20"),
        (EventType.SELLING, "-20", "-20"),
        (EventType.BUYING, "-15", "15"),
        (EventType.STOCK_TAKE, "4", "4"),
        (EventType.WASTAGE, "2.5", "-2.5"),
        (EventType.UNKNOWN, "-3", "-3"),
        (EventType.UNKNOWN, "3", "3"),
    ],
)
def test_signed_applies_direction(event_type, qty, expected) -> None:
    assert EventClassifier.signed(event_type, Decimal(qty)) == Decimal(expected)


def test_normalize_code() -> None:
    assert normalize_code(5.0) == "5"
    assert normalize_code(" AdjOut ") == "AdjOut"
    assert normalize_code(float("nan")) is None
    assert normalize_code("  ") is None
