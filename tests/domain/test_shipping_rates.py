"""Tests for the shipping rate table."""

from decimal import Decimal

from sakura.config import ShippingRules
from sakura.shipping.rates import cod_fee, quote_order_shipping, quote_shipment_fee

RULES = ShippingRules()


class TestOrderShipping:
    def test_standard_fee(self):
        assert quote_order_shipping(500000, "Standard", RULES) == Decimal("30000")

    def test_express_fee(self):
        assert quote_order_shipping(500000, "Express", RULES) == Decimal("50000")

    def test_free_above_threshold(self):
        assert quote_order_shipping(700001, "Standard", RULES) == 0
        assert quote_order_shipping(900000, "Express", RULES) == 0

    def test_threshold_itself_is_charged(self):
        assert quote_order_shipping(700000, "Standard", RULES) == Decimal("30000")


class TestShipmentFee:
    def test_light_parcel_in_province(self):
        quote = quote_shipment_fee("Standard", "0.8", "Ho Chi Minh City", RULES)
        assert quote.weight_fee == 0
        assert quote.distance_fee == 0
        assert quote.total == Decimal("30000")

    def test_weight_and_distance_surcharges(self):
        quote = quote_shipment_fee("Standard", "2.4", "Ha Noi", RULES)
        assert quote.weight_fee == Decimal("14000")
        assert quote.distance_fee == Decimal("15000")
        assert quote.total == Decimal("59000")

    def test_province_match_ignores_case_and_spacing(self):
        quote = quote_shipment_fee("Standard", "1", "  ho chi  minh city ", RULES)
        assert quote.distance_fee == 0

    def test_express_multiplies_carriage(self):
        quote = quote_shipment_fee("Express", "2.4", "Ha Noi", RULES)
        assert quote.base_fee == Decimal("45000")
        assert quote.total == Decimal("88500")

    def test_cod_fee_added(self):
        quote = quote_shipment_fee("Standard", "1", "Ho Chi Minh City", RULES, cod_amount=1000000)
        assert quote.cod_fee == Decimal("10000")
        assert quote.total == Decimal("40000")


class TestCodFee:
    def test_percentage_of_amount(self):
        assert cod_fee(2000000, RULES) == Decimal("20000")

    def test_minimum(self):
        assert cod_fee(100000, RULES) == Decimal("5000")

    def test_maximum(self):
        assert cod_fee(10000000, RULES) == Decimal("50000")
