import re

import pytest

from accounts import AddressNotFound, add_address, default_address, delete_address, set_default_address
from catalog import InvalidAttributes, ProductNotFound
from identifiers import brand_code, new_order_id, new_variant_id, suggest_sku
from schemas import Address, Product, ProductVariant, Review
from stock import StockLedger
from tests.conftest import make_user


@pytest.mark.parametrize("brand,code", [
    ("Cos RX", "COSRX"),
    ("La Roche-Posay", "LAROCHEPOS"),
    ("the ordinary 2", "THEORDINAR"),
    ("!!!", "PROD"),
    ("", "PROD"),
])
def test_brand_code(brand, code):
    assert brand_code(brand) == code


def test_id_formats():
    assert re.fullmatch(r"ORD-\d+-[0-9a-z]{9}", new_order_id())
    assert re.fullmatch(r"VAR-\d+-[0-9a-z]{9}", new_variant_id())
    assert suggest_sku("Cos RX", 0) == "COSRX-VAR-001"
    assert suggest_sku("Cos RX", 11) == "COSRX-VAR-012"


def test_blank_sku_gets_a_suggestion(catalog, serum):
    product, _, _ = serum
    assert catalog.suggest_sku(product.id) == "COSRX-VAR-003"
    created = catalog.create_variant(ProductVariant(
        product_id=product.id, sku="  ", attributes={"Size": "30ml"}, price=300, stock=5,
    ))
    assert created.sku == "COSRX-VAR-003"
    assert created.id.startswith("VAR-")


def test_variant_attributes_must_be_declared(catalog, serum):
    product, small, _ = serum
    with pytest.raises(InvalidAttributes):
        catalog.create_variant(ProductVariant(
            product_id=product.id, sku="X", attributes={"Colour": "Red"}, price=1,
        ))
    with pytest.raises(InvalidAttributes):
        catalog.update_variant(small.id, {"attributes": {"Shade": "Light"}})


def test_variant_needs_existing_product(catalog):
    with pytest.raises(ProductNotFound):
        catalog.create_variant(ProductVariant(product_id="PROD-nope", sku="X", attributes={}, price=1))


def test_only_active_variants_when_asked(catalog, serum):
    product, small, large = serum
    catalog.update_variant(large.id, {"active": False})
    assert {v.id for v in catalog.variants_for(product.id)} == {small.id, large.id}
    assert [v.id for v in catalog.variants_for(product.id, active_only=True)] == [small.id]


def test_deleting_a_product_removes_its_variants(catalog, serum):
    product, small, _ = serum
    assert catalog.delete_product(product.id) == 2
    assert catalog.variants_for(product.id) == []
    with pytest.raises(ProductNotFound):
        catalog.get_product(product.id)


def test_list_products_defaults_to_published(catalog, serum):
    catalog.create_product(Product(name="Draft Toner", brand="Klairs", category="Toners"))
    assert [p.name for p in catalog.list_products()] == ["Snail Mucin Serum"]
    assert len(catalog.list_products(status=None)) == 2


def test_reviews_update_rating(catalog, serum):
    product, _, _ = serum
    catalog.add_review(Review(product_id=product.id, user_id="u1", user_name="A", rating=5))
    catalog.add_review(Review(product_id=product.id, user_id="u2", user_name="B", rating=4))
    catalog.add_review(Review(product_id=product.id, user_id="u3", user_name="C", rating=4))
    refreshed = catalog.get_product(product.id)
    assert refreshed.review_count == 3
    assert refreshed.rating == 4.33


def test_review_needs_a_rating():
    with pytest.raises(ValueError):
        Review(product_id="p", user_id="u", user_name="A", rating=0)


def test_rating_cannot_be_edited_directly(catalog, serum):
    product, _, _ = serum
    assert catalog.update_product(product.id, {"rating": 5, "brand": "COSRX"}).rating == 0


def test_address_book_keeps_one_default(store, customer, home):
    office = add_address(store, customer.id, Address(name="Asha", phone="1", street="Durbar Marg",
                                                     city="Kathmandu", district="Kathmandu", postal_code="44600"))
    assert not office.is_default
    addresses = set_default_address(store, customer.id, office.id)
    assert [a.id for a in addresses if a.is_default] == [office.id]
    assert default_address(addresses).id == office.id

    remaining = delete_address(store, customer.id, office.id)
    assert [a.id for a in remaining] == [home.id]
    assert remaining[0].is_default
    with pytest.raises(AddressNotFound):
        set_default_address(store, customer.id, office.id)


def test_first_address_becomes_default(store):
    user = make_user(store, name="Bina")
    first = add_address(store, user.id, Address(name="Bina", phone="2", street="Lakeside",
                                                city="Pokhara", district="Kaski", postal_code="33700"))
    assert first.is_default
    assert default_address([]) is None


def test_variant_edit_keeps_a_reservation_made_meanwhile(catalog, store, serum, monkeypatch):
    _, small, _ = serum
    ledger = StockLedger(store)
    read = catalog.get_variant
    taken = []

    def read_then_reserve(variant_id):
        found = read(variant_id)
        if not taken:
            taken.append(ledger.reserve(variant_id, 3))
        return found

    monkeypatch.setattr(catalog, "get_variant", read_then_reserve)
    edited = catalog.update_variant(small.id, {"price": 550})
    assert taken == [True]
    assert edited.price == 550
    assert ledger.get(small.id).stock == 0


def test_variant_stock_edit_is_absolute(catalog, store, serum):
    _, small, _ = serum
    assert catalog.update_variant(small.id, {"stock": 12, "active": False}).stock == 12
    assert StockLedger(store).get(small.id).active is False
    with pytest.raises(ValueError):
        catalog.update_variant(small.id, {"stock": -1})
    assert StockLedger(store).get(small.id).stock == 12


def test_product_edit_keeps_a_rating_refreshed_meanwhile(catalog, serum, monkeypatch):
    product, _, _ = serum
    read = catalog.get_product
    reviewed = []

    def read_then_review(product_id):
        found = read(product_id)
        if not reviewed:
            reviewed.append(True)
            catalog.add_review(Review(product_id=product_id, user_id="u1", user_name="A", rating=5))
        return found

    monkeypatch.setattr(catalog, "get_product", read_then_review)
    edited = catalog.update_product(product.id, {"brand": "COSRX"})
    assert edited.brand == "COSRX"
    assert edited.rating == 5
    assert edited.review_count == 1
