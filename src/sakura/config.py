"""Business rules for the fulfillment workflow.

Currencies, fees, thresholds and gateway secrets are plain frozen objects
handed to the components that need them (rate table, tax rule, gateway
adapters). Defaults mirror the Sakura Home storefront; every value can be
overridden with a ``SAKURA_*`` environment variable.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class PricingRules:
    currency: str = "VND"
    currency_exponent: int = 0
    tax_rate: Decimal = Decimal("0")

    @property
    def unit(self) -> Decimal:
        """Smallest currency unit, e.g. ``Decimal("1")`` for VND or ``Decimal("0.01")`` for USD."""
        return Decimal(1).scaleb(-self.currency_exponent)


@dataclass(frozen=True)
class StoreAddress:
    name: str = "Sakura Home"
    phone: str = "1900 1234"
    street: str = "123 Nguyen Hue"
    ward: str = "Ben Nghe"
    district: str = "District 1"
    province: str = "Ho Chi Minh City"
    country: str = "VN"


@dataclass(frozen=True)
class ShippingRules:
    standard_fee: Decimal = Decimal("30000")
    express_fee: Decimal = Decimal("50000")
    free_shipping_threshold: Decimal = Decimal("700000")
    base_weight_kg: Decimal = Decimal("1")
    per_kg_surcharge: Decimal = Decimal("10000")
    inter_province_surcharge: Decimal = Decimal("15000")
    express_multiplier: Decimal = Decimal("1.5")
    cod_rate: Decimal = Decimal("0.01")
    cod_min_fee: Decimal = Decimal("5000")
    cod_max_fee: Decimal = Decimal("50000")
    carrier_name: str = "SakuraExpress"
    sender: StoreAddress = field(default_factory=StoreAddress)


@dataclass(frozen=True)
class GatewayRules:
    """Per-method gateway settings."""

    secret: str
    expiry_minutes: int
    fee_rate: Decimal = Decimal("0")
    fixed_fee: Decimal = Decimal("0")
    enabled: bool = True


@dataclass(frozen=True)
class PaymentRules:
    vnpay: GatewayRules = field(default_factory=lambda: GatewayRules(secret="vnpay-secret", expiry_minutes=15))
    momo: GatewayRules = field(default_factory=lambda: GatewayRules(secret="momo-secret", expiry_minutes=15))
    sepay: GatewayRules = field(
        default_factory=lambda: GatewayRules(secret="sepay-secret", expiry_minutes=3 * 24 * 60)
    )
    vnpay_base_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    vnpay_api_url: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    vnpay_terminal_code: str = "SAKURA01"
    momo_endpoint: str = "https://test-payment.momo.vn/v2/gateway/api"
    momo_partner_code: str = "MOMOSAKURA"
    momo_access_key: str = "momo-access-key"
    sepay_qr_url: str = "https://qr.sepay.vn/img"
    bank_name: str = "Vietcombank"
    bank_code: str = "VCB"
    bank_account_number: str = "0071000123456"
    bank_account_name: str = "CONG TY SAKURA HOME"

    def for_method(self, method: str) -> GatewayRules:
        return getattr(self, method.lower())


@dataclass(frozen=True)
class Settings:
    pricing: PricingRules = field(default_factory=PricingRules)
    shipping: ShippingRules = field(default_factory=ShippingRules)
    payments: PaymentRules = field(default_factory=PaymentRules)
    order_number_attempts: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``SAKURA_*`` environment variables over the defaults."""
        pricing = PricingRules(
            currency=os.getenv("SAKURA_CURRENCY", "VND"),
            currency_exponent=_env_int("SAKURA_CURRENCY_EXPONENT", 0),
            tax_rate=_env_decimal("SAKURA_TAX_RATE", "0"),
        )
        shipping = ShippingRules(
            standard_fee=_env_decimal("SAKURA_STANDARD_SHIPPING_FEE", "30000"),
            express_fee=_env_decimal("SAKURA_EXPRESS_SHIPPING_FEE", "50000"),
            free_shipping_threshold=_env_decimal("SAKURA_FREE_SHIPPING_THRESHOLD", "700000"),
            carrier_name=os.getenv("SAKURA_CARRIER_NAME", "SakuraExpress"),
        )
        payments = PaymentRules(
            vnpay=GatewayRules(
                secret=os.getenv("SAKURA_VNPAY_SECRET", "vnpay-secret"),
                expiry_minutes=_env_int("SAKURA_VNPAY_EXPIRY_MINUTES", 15),
            ),
            momo=GatewayRules(
                secret=os.getenv("SAKURA_MOMO_SECRET", "momo-secret"),
                expiry_minutes=_env_int("SAKURA_MOMO_EXPIRY_MINUTES", 15),
            ),
            sepay=GatewayRules(
                secret=os.getenv("SAKURA_SEPAY_SECRET", "sepay-secret"),
                expiry_minutes=_env_int("SAKURA_SEPAY_EXPIRY_MINUTES", 3 * 24 * 60),
            ),
        )
        return cls(pricing=pricing, shipping=shipping, payments=payments)


_current_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings. Loaded from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = Settings.from_env()
    return _current_settings


def set_settings(settings: Settings) -> None:
    """Override the active settings (useful for tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    """Reset to environment-derived settings."""
    global _current_settings
    _current_settings = None
