"""In-memory catalog for development and testing."""

import threading
from dataclasses import replace
from decimal import Decimal

from sakura.catalog.port import CatalogPort, LiveProduct


def _key(product_id, variant_id) -> tuple[str, str | None]:
    return str(product_id), str(variant_id) if variant_id else None


class FakeCatalog(CatalogPort):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._products: dict[tuple[str, str | None], LiveProduct] = {}
        self.calls: list[dict] = []

    def add_product(
        self,
        product_id: str,
        price,
        stock: int,
        variant_id: str | None = None,
        name: str | None = None,
        is_active: bool = True,
        weight_kg="0.5",
    ) -> LiveProduct:
        product = LiveProduct(
            product_id=str(product_id),
            variant_id=str(variant_id) if variant_id else None,
            name=name or f"Product {product_id}",
            price=Decimal(str(price)),
            stock=stock,
            is_active=is_active,
            weight_kg=Decimal(str(weight_kg)),
        )
        with self._lock:
            self._products[_key(product.product_id, product.variant_id)] = product
        return product

    def set_price(self, product_id: str, price, variant_id: str | None = None) -> None:
        self._update(product_id, variant_id, price=Decimal(str(price)))

    def set_stock(self, product_id: str, stock: int, variant_id: str | None = None) -> None:
        self._update(product_id, variant_id, stock=stock)

    def deactivate(self, product_id: str, variant_id: str | None = None) -> None:
        self._update(product_id, variant_id, is_active=False)

    def stock_of(self, product_id: str, variant_id: str | None = None) -> int:
        return self._products[_key(product_id, variant_id)].stock

    def _update(self, product_id, variant_id, **changes) -> None:
        key = _key(product_id, variant_id)
        with self._lock:
            self._products[key] = replace(self._products[key], **changes)

    def get_live_stock_and_price(self, product_id: str, variant_id: str | None = None) -> LiveProduct | None:
        self.calls.append({"method": "get_live_stock_and_price", "product_id": product_id, "variant_id": variant_id})
        return self._products.get(_key(product_id, variant_id))

    def decrement_stock(self, product_id: str, variant_id: str | None, quantity: int) -> bool:
        key = _key(product_id, variant_id)
        with self._lock:
            product = self._products.get(key)
            if product is None or product.stock < quantity:
                return False
            self._products[key] = replace(product, stock=product.stock - quantity)
        self.calls.append({"method": "decrement_stock", "product_id": product_id, "quantity": quantity})
        return True

    def restore_stock(self, product_id: str, variant_id: str | None, quantity: int) -> None:
        key = _key(product_id, variant_id)
        with self._lock:
            product = self._products[key]
            self._products[key] = replace(product, stock=product.stock + quantity)
        self.calls.append({"method": "restore_stock", "product_id": product_id, "quantity": quantity})
