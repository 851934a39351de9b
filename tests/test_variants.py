import itertools

import pytest

from schemas import ProductVariant
from variants import (
    NoVariantsAvailable,
    VariantUnavailable,
    attribute_groups,
    candidates,
    describe_options,
    initial_selection,
    is_purchasable,
    resolve,
    select,
)


def variant(vid, price=100, stock=5, active=True, **attributes):
    return ProductVariant(id=vid, product_id="P1", sku=f"SKU-{vid}", attributes=attributes,
                          price=price, stock=stock, active=active)


@pytest.fixture
def sized():
    return [
        variant("a", price=500, stock=3, Size="50ml"),
        variant("b", price=900, stock=0, Size="100ml"),
    ]


@pytest.fixture
def grid():
    return [
        variant("s-normal", price=500, Size="50ml", Type="Normal"),
        variant("s-oily", price=550, Size="50ml", Type="Oily"),
        variant("l-normal", price=900, Size="100ml", Type="Normal"),
        variant("l-oily", price=950, stock=0, Size="100ml", Type="Oily"),
        variant("xl-dry", price=1200, Size="200ml", Type="Dry"),
    ]


def test_attribute_groups_follow_declared_then_seen_order(grid):
    groups = attribute_groups(grid, ["Type", "Size"])
    assert list(groups) == ["Type", "Size"]
    assert groups["Size"] == ["50ml", "100ml", "200ml"]
    assert groups["Type"] == ["Normal", "Oily", "Dry"]


def test_sold_out_value_is_unavailable(sized):
    with pytest.raises(VariantUnavailable):
        select(sized, "Size", "100ml")


def test_available_value_resolves(sized):
    assert select(sized, "Size", "50ml").id == "a"


def test_select_keeps_other_attributes(grid):
    current = grid[1]  # 50ml / Oily
    # 100ml/Oily is sold out so the fallback is the first 100ml candidate
    assert select(grid, "Size", "100ml", current).id == "l-normal"
    current = grid[2]  # 100ml / Normal
    assert select(grid, "Size", "50ml", current).id == "s-normal"


def test_select_exact_match_beats_first_candidate(grid):
    current = grid[1]  # 50ml / Oily
    assert select(grid, "Type", "Normal", current).id == "s-normal"
    current = grid[2]  # 100ml / Normal
    assert select(grid, "Type", "Oily", current).id == "s-oily"


def test_select_falls_back_when_combination_missing(grid):
    current = grid[0]  # 50ml / Normal
    picked = select(grid, "Type", "Dry", current)
    assert picked.id == "xl-dry"
    assert picked.attributes["Size"] == "200ml"


def test_inactive_variant_is_never_selected():
    variants = [variant("x", active=False, Size="30ml"), variant("y", Size="50ml")]
    with pytest.raises(VariantUnavailable):
        select(variants, "Size", "30ml")
    with pytest.raises(VariantUnavailable):
        resolve(variants, {"Size": "30ml"})


def test_resolve_complete_selection(grid):
    assert resolve(grid, {"Size": "100ml", "Type": "Normal"}).id == "l-normal"
    with pytest.raises(VariantUnavailable):
        resolve(grid, {"Size": "100ml", "Type": "Oily"})
    with pytest.raises(VariantUnavailable):
        resolve(grid, {"Size": "200ml", "Type": "Normal"})


def test_no_variants_means_contact_for_availability():
    with pytest.raises(NoVariantsAvailable):
        initial_selection([])
    with pytest.raises(NoVariantsAvailable):
        select([], "Size", "50ml")
    with pytest.raises(NoVariantsAvailable):
        resolve([], {"Size": "50ml"})


def test_initial_selection_skips_sold_out():
    variants = [variant("gone", stock=0, Size="50ml"), variant("here", Size="100ml")]
    assert initial_selection(variants).id == "here"
    with pytest.raises(VariantUnavailable):
        initial_selection([variant("gone", stock=0, Size="50ml")])


def test_nothing_unpurchasable_is_ever_returned(grid):
    grid = grid + [variant("off", active=False, Size="50ml", Type="Dry")]
    groups = attribute_groups(grid)
    for current in [None] + grid:
        for key, values in groups.items():
            for value in values:
                try:
                    picked = select(grid, key, value, current)
                except VariantUnavailable:
                    assert candidates(grid, key, value) == []
                    continue
                assert is_purchasable(picked)
                assert picked.attributes[key] == value
    for size, kind in itertools.product(groups["Size"], groups["Type"]):
        try:
            assert is_purchasable(resolve(grid, {"Size": size, "Type": kind}))
        except VariantUnavailable:
            pass


def test_describe_options(grid):
    options = describe_options(grid, grid[0], ["Size", "Type"])
    size = {c["value"]: c for c in options[0]["values"]}
    assert options[0]["key"] == "Size"
    assert size["50ml"]["selected"] is True
    assert size["50ml"]["lowest_price"] == 500
    assert size["100ml"]["lowest_price"] == 900
    kinds = {c["value"]: c for c in options[1]["values"]}
    assert kinds["Oily"]["available"] is True
    assert kinds["Oily"]["lowest_price"] == 550


def test_select_needs_the_whole_attribute_map_to_match():
    variants = [
        variant("s-normal", Size="50ml", Type="Normal"),
        variant("l-normal-gift", Size="100ml", Type="Normal", Pack="Gift"),
        variant("l-normal", Size="100ml", Type="Normal"),
    ]
    assert select(variants, "Size", "100ml", variants[0]).id == "l-normal"


def test_inactive_value_is_greyed_out_not_hidden():
    variants = [variant("a", Size="50ml"), variant("b", active=False, Size="100ml")]
    sizes = {c["value"]: c["available"] for c in describe_options(variants)[0]["values"]}
    assert sizes == {"50ml": True, "100ml": False}
