"""In-memory address book for development and testing."""

from sakura.addresses.port import AddressBookPort, ResolvedAddress


class FakeAddressBook(AddressBookPort):
    def __init__(self) -> None:
        self._addresses: dict[tuple[str, str], ResolvedAddress] = {}

    def add(self, customer_id: str, address_id: str, address: ResolvedAddress) -> None:
        self._addresses[(str(customer_id), str(address_id))] = address

    def resolve_address(self, address_id: str, customer_id: str) -> ResolvedAddress | None:
        return self._addresses.get((str(customer_id), str(address_id)))
