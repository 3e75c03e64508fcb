"""Address book adapter registry."""

from sakura.addresses.fake_adapter import FakeAddressBook
from sakura.addresses.port import AddressBookPort

_current_address_book: AddressBookPort | None = None


def get_address_book() -> AddressBookPort:
    global _current_address_book
    if _current_address_book is None:
        _current_address_book = FakeAddressBook()
    return _current_address_book


def set_address_book(address_book: AddressBookPort) -> None:
    global _current_address_book
    _current_address_book = address_book


def reset_address_book() -> None:
    global _current_address_book
    _current_address_book = None
