"""Tests for invoice line building and running totals."""

import logging

import pytest

from invoice_sync.invoicing.discounts import DiscountAllocator
from invoice_sync.invoicing.errors import UnresolvedProductError
from invoice_sync.invoicing.lines import (
    InvoiceLineBuilder,
    LineAmounts,
    LineTotals,
    accumulate,
    line_amounts,
    resolve_tax_tier,
)
from invoice_sync.invoicing.models import LineType, ShippingProduct, TaxTier, order_from_dict
from invoice_sync.utils.config import Config

SHIPPING_PRODUCT = ShippingProduct(product_id=900, description="Shipping")


def build(raw_order, product_ids, shipping_product=None, builder=None):
    order = order_from_dict(raw_order)
    allocation = DiscountAllocator().allocate(order)
    return (builder or InvoiceLineBuilder()).build(order, allocation, product_ids, shipping_product)


class TestLineHelpers:
    """Test cases for line amount helpers."""

    def test_line_amounts(self):
        amounts = line_amounts(10.0, 2, 25.0, TaxTier.NORMAL)

        assert amounts.gross_excl_tax == 20.0
        assert amounts.discount_excl_tax == 5.0
        assert amounts.base_excl_tax == 15.0
        assert amounts.base_vat == pytest.approx(3.45)

    def test_totals_are_immutable_folds(self):
        """Adding amounts returns new totals and leaves the original untouched."""
        start = LineTotals()
        first = LineAmounts(gross_excl_tax=10, discount_excl_tax=1, base_excl_tax=9, base_vat=2.07)
        second = LineAmounts(gross_excl_tax=5, discount_excl_tax=0, base_excl_tax=5, base_vat=0)

        after = start.add(first).add(second)

        assert start == LineTotals()
        assert after.total_base_excl_tax == 14
        assert after.total_base_vat == pytest.approx(2.07)
        assert after.total_discount_excl_tax == 1
        assert after.gross_total == pytest.approx(16.07)
        assert accumulate([(None, first), (None, second)]) == after

    def test_unknown_rate_falls_back_to_normal(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert resolve_tax_tier(8.0) is TaxTier.NORMAL
        assert "8.0%" in caplog.text


class TestInvoiceLineBuilder:
    """Test cases for InvoiceLineBuilder.build."""

    def test_single_domestic_product(self, make_item, make_order):
        """A domestic line is priced excluding VAT at the normal tier."""
        built = build(
            make_order([make_item("1001", unit_price=12.30, quantity=2, title="T-shirt")], total=24.60),
            {"1001": 501},
        )

        line = built.lines[0]
        assert line.product_id == 501
        assert line.description == "T-shirt"
        assert line.price == 10.0
        assert line.quantity == 2
        assert line.tax_tier is TaxTier.NORMAL
        assert line.exemption_code == ""
        assert line.discount_percent == 0.0
        assert built.totals.total_base_excl_tax == pytest.approx(20.0)
        assert built.totals.total_base_vat == pytest.approx(4.6)
        assert built.totals.total_discount_excl_tax == 0.0
        assert built.shipping_line is None

    def test_foreign_order_is_exempt(self, make_item, make_order):
        built = build(
            make_order([make_item("1001", unit_price=50.00)], total=50.00, country="Spain"),
            {"1001": 501},
        )

        line = built.lines[0]
        assert line.tax_tier is TaxTier.EXEMPT
        assert line.exemption_code == "M01"
        assert line.price == 50.0
        assert built.totals.total_base_vat == 0.0

    def test_exemption_code_from_config(self, make_item, make_order):
        builder = InvoiceLineBuilder.from_config(Config())
        built = build(
            make_order([make_item("1001", unit_price=50.00)], total=50.00, country="Spain"),
            {"1001": 501},
            builder=builder,
        )
        assert built.lines[0].exemption_code == "M01"

    def test_product_discount_applied(self, make_item, make_discount, make_order):
        built = build(
            make_order(
                [make_item("1001", unit_price=30.00, allocations=(5.00,))],
                total=25.00,
                applications=[make_discount(selection="ENTITLED", method="EACH", amount=5.00)],
            ),
            {"1001": 501},
        )

        line = built.lines[0]
        assert line.price == 24.39
        assert line.discount_percent == 16.6667
        assert built.totals.total_discount_excl_tax == pytest.approx(24.39 * 0.166667)
        assert built.totals.gross_total == pytest.approx(25.0, abs=0.01)

    def test_description_truncated(self, make_item, make_order):
        built = build(make_order([make_item("1001", title="A" * 140)], total=12.30), {"1001": 501})
        assert len(built.lines[0].description) == 100

    def test_unresolved_product(self, make_item, make_order):
        with pytest.raises(UnresolvedProductError):
            build(make_order([make_item("1001")], total=12.30), {})

    def test_lines_follow_input_order(self, make_item, make_order):
        built = build(
            make_order(
                [make_item("1002", unit_price=5.00), make_item("1001", unit_price=7.00)],
                total=12.00,
                shipping=3.00,
            ),
            {"1001": 501, "1002": 502},
            SHIPPING_PRODUCT,
        )

        assert [line.product_id for line in built.lines] == [502, 501, 900]
        assert [line.line_type for line in built.lines] == [LineType.PRODUCT, LineType.PRODUCT, LineType.SHIPPING]
        assert len(built.product_lines) == 2

    def test_shipping_skipped_without_product(self, make_item, make_order, caplog):
        with caplog.at_level(logging.WARNING):
            built = build(make_order([make_item("1001")], total=17.30, shipping=5.00), {"1001": 501})

        assert built.shipping_line is None
        assert "no shipping product" in caplog.text

    def test_zero_shipping_has_no_line(self, make_item, make_order):
        built = build(make_order([make_item("1001")], total=12.30, shipping=0), {"1001": 501}, SHIPPING_PRODUCT)
        assert built.shipping_line is None

    def test_shipping_line(self, make_item, make_order):
        built = build(make_order([make_item("1001")], total=17.30, shipping=5.00), {"1001": 501}, SHIPPING_PRODUCT)

        shipping = built.shipping_line
        assert shipping.product_id == 900
        assert shipping.description == "Shipping"
        assert shipping.quantity == 1
        assert shipping.price == 4.065
        assert shipping.tax_tier is TaxTier.NORMAL
        assert shipping.discount_percent == 0.0
        assert not built.is_free_shipping

    def test_shipping_default_description(self, make_item, make_order):
        built = build(
            make_order([make_item("1001")], total=17.30, shipping=5.00),
            {"1001": 501},
            ShippingProduct(product_id=900),
        )
        assert built.shipping_line.description == "Custos de Envio"

    def test_shipping_follows_exempt_products(self, make_item, make_order):
        built = build(
            make_order([make_item("1001", unit_price=20.00)], total=25.00, shipping=5.00, country="France"),
            {"1001": 501},
            SHIPPING_PRODUCT,
        )

        shipping = built.shipping_line
        assert shipping.tax_tier is TaxTier.EXEMPT
        assert shipping.exemption_code == "M01"
        assert shipping.price == 5.0

    @pytest.mark.parametrize("value", [{"percentage": 100}, {"amount": 5.00}, {"amount": 8.00}])
    def test_free_shipping(self, make_item, make_discount, make_order, value):
        """Shipping discounts covering the whole price zero out the shipping line."""
        built = build(
            make_order(
                [make_item("1001", unit_price=12.30)],
                total=12.30,
                applications=[make_discount(target="SHIPPING_LINE", method="EACH", **value)],
                shipping=5.00,
            ),
            {"1001": 501},
            SHIPPING_PRODUCT,
        )

        shipping = built.shipping_line
        assert built.is_free_shipping
        assert shipping.price == 4.065
        assert shipping.discount_percent == 100.0
        assert built.totals.total_base_excl_tax == pytest.approx(10.0)
        assert built.totals.gross_total == pytest.approx(12.30)
