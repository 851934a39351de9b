"""Address book kept on the user document."""
from typing import List, Optional

from database import DocumentStore
from identifiers import new_address_id
from schemas import Address

USERS = "user"


class AddressNotFound(Exception):
    pass


def default_address(addresses: List[Address]) -> Optional[Address]:
    return next((a for a in addresses if a.is_default), addresses[0] if addresses else None)


def _load(store: DocumentStore, user_id: str) -> List[Address]:
    doc = store.get(USERS, user_id) or {}
    return [Address(**a) for a in doc.get("addresses", [])]


def _save(store: DocumentStore, user_id: str, addresses: List[Address]) -> List[Address]:
    store.update(USERS, user_id, {"addresses": [a.model_dump() for a in addresses]})
    return addresses


def _make_default(addresses: List[Address], address_id: str) -> List[Address]:
    return [a.model_copy(update={"is_default": a.id == address_id}) for a in addresses]


def add_address(store: DocumentStore, user_id: str, address: Address) -> Address:
    addresses = _load(store, user_id)
    address = address.model_copy(update={"id": new_address_id()})
    addresses.append(address)
    if address.is_default or len(addresses) == 1:
        addresses = _make_default(addresses, address.id)
    _save(store, user_id, addresses)
    return next(a for a in addresses if a.id == address.id)


def set_default_address(store: DocumentStore, user_id: str, address_id: str) -> List[Address]:
    addresses = _load(store, user_id)
    if not any(a.id == address_id for a in addresses):
        raise AddressNotFound(address_id)
    return _save(store, user_id, _make_default(addresses, address_id))


def delete_address(store: DocumentStore, user_id: str, address_id: str) -> List[Address]:
    addresses = _load(store, user_id)
    remaining = [a for a in addresses if a.id != address_id]
    if len(remaining) == len(addresses):
        raise AddressNotFound(address_id)
    if remaining and not any(a.is_default for a in remaining):
        remaining = _make_default(remaining, remaining[0].id)
    return _save(store, user_id, remaining)
