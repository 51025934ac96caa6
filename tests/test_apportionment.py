"""
Unit tests for apportionment and category resolution.
"""
import pytest

from core.apportionment import apportion, resolve_line_items
from core.exceptions import ApportionmentError, UnknownCategoryError
from core.schema import ApportionMode, ClassifiedLineItem

CATALOG = {"Groceries": 1, "Transport": 2}


class RecordingLookup:
    def __init__(self, catalog):
        self.catalog = catalog
        self.calls = []

    def __call__(self, names):
        names = list(names)
        self.calls.append(names)
        return {name: self.catalog[name] for name in names if name in self.catalog}


def item(mode, category, amount=10.0, description=""):
    return ClassifiedLineItem(apportion_mode=mode, category=category, amount=amount, description=description)


@pytest.mark.parametrize("mode,expected", [
    (ApportionMode.ALONE, (None, False)),
    (ApportionMode.SHARED, (7, False)),
    (ApportionMode.OWED_BY_PARTNER, (7, True)),
])
def test_apportion_with_partner(mode, expected):
    assert apportion(mode, 7) == expected


def test_apportion_alone_without_partner():
    assert apportion(ApportionMode.ALONE, None) == (None, False)


@pytest.mark.parametrize("mode", [ApportionMode.SHARED, ApportionMode.OWED_BY_PARTNER])
def test_apportion_requires_partner(mode):
    """Test modes that involve the partner fail when there is none."""
    with pytest.raises(ApportionmentError):
        apportion(mode, None)


def test_resolve_line_items():
    """Test items are resolved in order with a single lookup."""
    lookup = RecordingLookup(CATALOG)
    resolved = resolve_line_items(
        [item("shared", "Groceries", 50.0, "Milk"), item("alone", "Transport", 25.0), item("other", "Groceries", 5.0)],
        partner_id=7,
        lookup=lookup,
    )

    assert len(lookup.calls) == 1
    assert [r.category_id for r in resolved] == [1, 2, 1]
    assert [r.amount for r in resolved] == [50.0, 25.0, 5.0]
    assert resolved[0].shared_with == 7 and not resolved[0].takes_all
    assert resolved[1].shared_with is None
    assert resolved[2].takes_all
    assert resolved[0].description == "Milk"


def test_resolve_unknown_category():
    """Test an unknown category name fails the whole job."""
    with pytest.raises(UnknownCategoryError) as exc_info:
        resolve_line_items([item("alone", "Groceries"), item("alone", "Snacks")], None, RecordingLookup(CATALOG))
    assert exc_info.value.message == "Unknown category: Snacks"
    assert exc_info.value.details["categories"] == ["Snacks"]


def test_resolve_multiple_unknown_categories():
    with pytest.raises(UnknownCategoryError, match="Unknown categories: Pets, Snacks"):
        resolve_line_items([item("alone", "Snacks"), item("alone", "Pets")], None, RecordingLookup(CATALOG))


def test_resolve_checks_partner_before_lookup():
    """Test apportionment is rejected before any category lookup."""
    lookup = RecordingLookup(CATALOG)
    with pytest.raises(ApportionmentError):
        resolve_line_items([item("shared", "Groceries")], None, lookup)
    assert lookup.calls == []


def test_resolve_empty():
    assert resolve_line_items([], 7, RecordingLookup(CATALOG)) == []
