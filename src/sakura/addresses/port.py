"""Address book port: resolves a customer's saved address at checkout."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class ResolvedAddress:
    recipient_name: str
    phone: str
    street: str
    ward: str
    district: str
    province: str
    country: str = "VN"
    postal_code: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class AddressBookPort(ABC):
    @abstractmethod
    def resolve_address(self, address_id: str, customer_id: str) -> ResolvedAddress | None:
        """Return the address if it exists and belongs to ``customer_id``."""
        ...
