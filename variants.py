"""
Variant resolution

Maps an attribute selection (e.g. Size=100ml) onto the one variant a
customer can actually buy. Only purchasable variants (active and in stock)
are ever returned.
"""
from typing import Dict, Iterable, List, Optional

from schemas import ProductVariant


class NoVariantsAvailable(Exception):
    def __init__(self, product_id: Optional[str] = None):
        self.product_id = product_id
        super().__init__("No variants available. Please contact us for availability.")


class VariantUnavailable(Exception):
    def __init__(self, selection: Dict[str, str]):
        self.selection = dict(selection)
        label = ", ".join(f"{k}: {v}" for k, v in self.selection.items()) or "any option"
        super().__init__(f"{label} is currently unavailable")


def is_purchasable(variant: ProductVariant) -> bool:
    return variant.active and variant.stock > 0


def attribute_groups(
    variants: Iterable[ProductVariant], attribute_keys: Iterable[str] = ()
) -> Dict[str, List[str]]:
    """Group distinct attribute values by key.

    Keys come in declared order first, then in the order they are first seen
    on a variant. Values keep first-seen order.
    """
    groups: Dict[str, List[str]] = {key: [] for key in attribute_keys}
    for variant in variants:
        for key, value in variant.attributes.items():
            values = groups.setdefault(key, [])
            if value not in values:
                values.append(value)
    return {key: values for key, values in groups.items() if values}


def candidates(variants: Iterable[ProductVariant], key: str, value: str) -> List[ProductVariant]:
    return [v for v in variants if v.attributes.get(key) == value and is_purchasable(v)]


def initial_selection(variants: List[ProductVariant]) -> ProductVariant:
    if not variants:
        raise NoVariantsAvailable()
    for variant in variants:
        if is_purchasable(variant):
            return variant
    raise VariantUnavailable({})


def select(
    variants: List[ProductVariant],
    key: str,
    value: str,
    current: Optional[ProductVariant] = None,
) -> ProductVariant:
    """Switch one attribute, keeping the others where possible.

    With a current selection, the variant matching every other attribute of
    `current` plus key=value wins. If there is none, the first purchasable
    variant with key=value is returned instead, which may change the other
    attributes.
    """
    if not variants:
        raise NoVariantsAvailable()
    matching = candidates(variants, key, value)
    if not matching:
        raise VariantUnavailable({key: value})
    if current is not None:
        wanted = {**current.attributes, key: value}
        for variant in matching:
            if variant.attributes == wanted:
                return variant
    return matching[0]


def resolve(variants: List[ProductVariant], selection: Dict[str, str]) -> ProductVariant:
    """Find the purchasable variant whose attributes equal `selection` exactly."""
    if not variants:
        raise NoVariantsAvailable()
    for variant in variants:
        if variant.attributes == selection and is_purchasable(variant):
            return variant
    raise VariantUnavailable(selection)


def describe_options(
    variants: List[ProductVariant],
    selected: Optional[ProductVariant] = None,
    attribute_keys: Iterable[str] = (),
) -> List[dict]:
    options = []
    for key, values in attribute_groups(variants, attribute_keys).items():
        choices = []
        for value in values:
            matching = candidates(variants, key, value)
            choices.append({
                "value": value,
                "available": bool(matching),
                "selected": selected is not None and selected.attributes.get(key) == value,
                "lowest_price": min(v.price for v in matching) if matching else None,
            })
        options.append({"key": key, "values": choices})
    return options
