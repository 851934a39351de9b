import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import main
from cart import CartLedger, DocumentCartSlot
from catalog import Catalog
from database import DocumentStore, get_store
from schemas import Address, Product, ProductVariant, UserOut


@pytest.fixture
def store():
    return DocumentStore(mongomock.MongoClient()["skinhub_test"])


@pytest.fixture
def catalog(store):
    return Catalog(store)


@pytest.fixture
def client(store):
    main.app.dependency_overrides[get_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def make_user(store, role="customer", name="Asha", addresses=()):
    user_id = str(ObjectId())
    store.put("user", user_id, {
        "name": name,
        "email": f"{name.lower()}.{user_id[-6:]}@mail.com",
        "password_hash": "not-used",
        "role": role,
        "addresses": [a.model_dump() for a in addresses],
    })
    return UserOut(**store.get("user", user_id))


def auth(user):
    return {"Authorization": f"Bearer {main.create_access_token({'sub': user.id})}"}


@pytest.fixture
def home():
    return Address(id="ADDR-1", name="Asha Rai", phone="9800000000", street="Jhamsikhel",
                   city="Lalitpur", district="Lalitpur", postal_code="44700", is_default=True)


@pytest.fixture
def customer(store, home):
    return make_user(store, addresses=[home])


@pytest.fixture
def admin(store):
    return make_user(store, role="admin", name="Admin")


@pytest.fixture
def serum(catalog):
    """A published product with a 50ml variant (3 in stock) and a sold-out 100ml variant."""
    product = catalog.create_product(Product(
        name="Snail Mucin Serum", brand="Cos RX", category="Serums",
        attribute_keys=["Size"], status="published",
    ))
    small = catalog.create_variant(ProductVariant(
        product_id=product.id, sku="A-VAR-001", attributes={"Size": "50ml"}, price=500, stock=3,
    ))
    large = catalog.create_variant(ProductVariant(
        product_id=product.id, sku="A-VAR-002", attributes={"Size": "100ml"}, price=900, stock=0,
    ))
    return product, small, large


@pytest.fixture
def cart(store):
    return CartLedger(DocumentCartSlot(store, "session-1"))
