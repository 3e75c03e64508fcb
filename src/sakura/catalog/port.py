"""Catalog port: live price and stock for the products a customer buys.

Catalog browsing and product management live outside this service. The
fulfillment workflow only needs the current price and stock of a product
variant, and the ability to move stock when an order is placed or
cancelled.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class LiveProduct:
    """Current catalog view of one product variant."""

    product_id: str
    variant_id: str | None
    name: str
    price: Decimal
    stock: int
    is_active: bool = True
    weight_kg: Decimal = Decimal("0.5")


class CatalogPort(ABC):
    @abstractmethod
    def get_live_stock_and_price(self, product_id: str, variant_id: str | None = None) -> LiveProduct | None:
        """Return the live view of a product variant, or ``None`` if the catalog does not know it."""
        ...

    @abstractmethod
    def decrement_stock(self, product_id: str, variant_id: str | None, quantity: int) -> bool:
        """Take ``quantity`` units out of stock.

        Returns False, leaving stock untouched, when fewer than ``quantity``
        units are available.
        """
        ...

    @abstractmethod
    def restore_stock(self, product_id: str, variant_id: str | None, quantity: int) -> None:
        """Put ``quantity`` units back into stock."""
        ...
