# backend/tests/test_allocation_engine.py

"""
Unit tests for the allocation engine

Tests cover:
- Zero / negative / invalid quantities
- Products without batches (default pricing)
- FIFO, FEFO and the wholesale FEFO override
- Wholesale MOQ gate and near-expiry override
- Explicit batch selection
- Overselling beyond tracked stock
- Floor-to-cent totals
- Amount → quantity allocation and its MOQ policy
- Determinism and non-mutation of inputs
"""

import copy
from datetime import datetime

import pytest

from allocation_engine import floor_to_cent
from conftest import days_from_now
from pricing_models import SaleMode


def _fifo_product():
    return {
        "id": "SUGAR",
        "unit": "kg",
        "sellingPrice": 15,
        "costPrice": 8,
        "trackExpiry": False,
        "batches": [
            {"id": "DAY2", "quantity": 5, "createdAt": "2026-01-02", "sellingPrice": 12, "costPrice": 9},
            {"id": "DAY1", "quantity": 5, "createdAt": "2026-01-01", "sellingPrice": 10, "costPrice": 7},
        ],
    }


class TestDegenerateInput:

    def test_zero_quantity(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), 0, "kg", now=now)
        assert result.total_selling_price == 0
        assert result.total_cost_price == 0
        assert result.used_batches == []
        assert result.average_selling_price == 0

    def test_negative_quantity(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), -3, "kg", now=now)
        assert result.total_selling_price == 0
        assert result.used_batches == []

    def test_non_numeric_quantity(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), "two", "kg", now=now)
        assert result.total_selling_price == 0

    def test_invalid_product_document(self, engine, now):
        result = engine.allocate_quantity(None, 2, "pcs", now=now)
        assert result.total_selling_price == 0
        assert result.used_batches == []


class TestNoBatches:

    def test_retail_uses_selling_price(self, engine, now):
        product = {"unit": "kg", "sellingPrice": 10, "costPrice": 6}
        result = engine.allocate_quantity(product, 2.5, "kg", now=now)
        assert result.total_selling_price == 25.0
        assert result.total_cost_price == 15.0
        assert result.used_batches == []

    def test_retail_falls_back_to_cost_price(self, engine, now):
        result = engine.allocate_quantity({"unit": "pcs", "costPrice": 6}, 2, "pcs", now=now)
        assert result.total_selling_price == 12.0

    def test_cost_falls_back_to_unit_price(self, engine, now):
        product = {"unit": "pcs", "sellingPrice": 10, "unitPrice": 4}
        result = engine.allocate_quantity(product, 3, "pcs", now=now)
        assert result.total_cost_price == 12.0

    def test_wholesale_without_wholesale_price_is_zero(self, engine, now):
        product = {"unit": "pcs", "sellingPrice": 10}
        result = engine.allocate_quantity(product, 3, "pcs", SaleMode.WHOLESALE, now=now)
        assert result.total_selling_price == 0

    def test_unit_conversion(self, engine, now):
        product = {"unit": "kg", "sellingPrice": 120}
        result = engine.allocate_quantity(product, 250, "g", now=now)
        assert result.quantity_in_product_units == 0.25
        assert result.total_selling_price == 30.0
        assert result.average_selling_price == 120.0


class TestConsumptionOrder:

    def test_fifo_draws_oldest_first(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), 7, "kg", now=now)

        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("DAY1", 5), ("DAY2", 2)]
        assert result.total_selling_price == 74.0  # 5 × 10 + 2 × 12
        assert result.total_cost_price == 53.0  # 5 × 7 + 2 × 9
        assert result.average_selling_price == pytest.approx(74.0 / 7)

    def test_retail_fefo_when_tracking_expiry(self, engine, now):
        product = _fifo_product()
        product["trackExpiry"] = "true"
        product["batches"][0]["expiry"] = days_from_now(90)   # DAY2
        product["batches"][1]["expiry"] = days_from_now(200)  # DAY1

        result = engine.allocate_quantity(product, 6, "kg", now=now)
        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("DAY2", 5), ("DAY1", 1)]

    def test_wholesale_forces_fefo(self, engine, now):
        product = {
            "unit": "pcs",
            "sellingPrice": 20,
            "wholesalePrice": 15,
            "wholesaleMOQ": 10,
            "trackExpiry": False,
            "batches": [
                {"id": "OLDER", "quantity": 5, "createdAt": "2026-01-01", "expiry": days_from_now(200)},
                {"id": "NEARER", "quantity": 5, "createdAt": "2026-01-05", "expiry": days_from_now(100)},
            ],
        }
        result = engine.allocate_quantity(product, 3, "pcs", SaleMode.WHOLESALE, now=now)

        assert [d.batch_id for d in result.used_batches] == ["NEARER"]
        assert result.total_selling_price == 45.0

    def test_exhausted_batches_skipped(self, engine, now):
        product = _fifo_product()
        product["batches"][1]["quantity"] = 0  # DAY1 sold out

        result = engine.allocate_quantity(product, 2, "kg", now=now)
        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("DAY2", 2)]


class TestWholesaleGate:

    def test_below_moq_uses_product_wholesale(self, engine, wholesale_product, now):
        result = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=now)

        assert result.used_batches[0].selling_price == 60
        assert result.total_selling_price == 300.0
        assert result.wholesale_moq_met is False

    def test_meeting_moq_uses_batch_wholesale(self, engine, wholesale_product, now):
        result = engine.allocate_quantity(wholesale_product, 15, "kg", SaleMode.WHOLESALE, now=now)

        assert result.used_batches[0].selling_price == 50
        assert result.total_selling_price == 750.0
        assert result.wholesale_moq_met is True

    def test_moq_compared_in_product_units(self, engine, wholesale_product, now):
        result = engine.allocate_quantity(wholesale_product, 10000, "g", SaleMode.WHOLESALE, now=now)
        assert result.used_batches[0].selling_price == 50

    def test_near_expiry_overrides_moq(self, engine, wholesale_product, now):
        wholesale_product["batches"][0]["expiry"] = days_from_now(10)
        result = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=now)

        assert result.used_batches[0].selling_price == 50
        assert result.used_batches[0].is_near_expiry is True
        assert result.total_selling_price == 250.0

    def test_near_expiry_window_is_configurable(self, wholesale_product, now):
        from allocation_engine import AllocationEngine
        from pricing_settings import PricingSettings

        wholesale_product["batches"][0]["expiry"] = days_from_now(10)
        engine = AllocationEngine(settings=PricingSettings(near_expiry_days=7))
        result = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=now)
        assert result.used_batches[0].selling_price == 60

    def test_retail_ignores_wholesale_prices(self, engine, wholesale_product, now):
        result = engine.allocate_quantity(wholesale_product, 15, "kg", SaleMode.RETAIL, now=now)
        assert result.used_batches[0].selling_price == 82

    def test_cost_uses_batch_cost(self, engine, wholesale_product, now):
        result = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=now)
        assert result.total_cost_price == 210.0


class TestSelectedBatch:

    def test_selected_batch_only(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), 3, "kg", selected_batch_id="DAY2", now=now)
        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("DAY2", 3)]
        assert result.total_selling_price == 36.0

    def test_selected_batch_overflow_priced_at_default(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), 7, "kg", selected_batch_id="DAY2", now=now)
        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("DAY2", 5)]
        assert result.unallocated_quantity == 2
        assert result.total_selling_price == 90.0  # 5 × 12 + 2 × 15

    def test_sold_out_selected_batch(self, engine, now):
        product = _fifo_product()
        product["batches"][0]["quantity"] = 0  # DAY2
        result = engine.allocate_quantity(product, 2, "kg", selected_batch_id="DAY2", now=now)
        assert result.used_batches == []
        assert result.total_selling_price == 30.0

    def test_unknown_selected_batch(self, engine, now):
        result = engine.allocate_quantity(_fifo_product(), 2, "kg", selected_batch_id="NOPE", now=now)
        assert result.used_batches == []
        assert result.unallocated_quantity == 2
        assert result.total_selling_price == 30.0

    def test_numeric_batch_ids_match(self, engine, now):
        product = {"unit": "pcs", "batches": [{"id": 7, "quantity": 4, "sellingPrice": 2}]}
        result = engine.allocate_quantity(product, 2, "pcs", selected_batch_id=7, now=now)
        assert result.used_batches[0].batch_id == "7"


class TestOverselling:

    def test_shortfall_priced_at_product_default(self, engine, now):
        product = {
            "unit": "pcs",
            "sellingPrice": 12,
            "costPrice": 5,
            "batches": [{"id": "B1", "quantity": 4, "sellingPrice": 10, "costPrice": 6}],
        }
        result = engine.allocate_quantity(product, 6, "pcs", now=now)

        assert result.total_selling_price == 64.0  # 4 × 10 + 2 × 12
        assert result.total_cost_price == 34.0  # 4 × 6 + 2 × 5
        assert result.unallocated_quantity == 2

    @pytest.mark.parametrize("quantity", [0.5, 3, 10, 10.75, 25])
    def test_conservation(self, engine, now, quantity):
        result = engine.allocate_quantity(_fifo_product(), quantity, "kg", now=now)
        drawn = sum(d.quantity for d in result.used_batches)
        assert drawn + result.unallocated_quantity == pytest.approx(result.quantity_in_product_units)


class TestRounding:

    def test_floor_to_cent(self):
        assert floor_to_cent(1.999) == 1.99
        assert floor_to_cent(0.29) == 0.28
        assert floor_to_cent(4.35) == 4.34
        assert floor_to_cent(0.30000000000000004) == 0.3
        assert floor_to_cent(10) == 10.0

    def test_totals_are_floored_not_rounded(self, engine, now):
        product = {"unit": "pcs", "batches": [{"id": "B", "quantity": 10, "sellingPrice": 1.999, "costPrice": 0.667}]}
        result = engine.allocate_quantity(product, 1, "pcs", now=now)
        assert result.total_selling_price == 1.99
        assert result.total_cost_price == 0.66


class TestDeterminism:

    def test_identical_inputs_identical_results(self, engine, wholesale_product, now):
        first = engine.allocate_quantity(wholesale_product, 12, "kg", SaleMode.WHOLESALE, now=now)
        second = engine.allocate_quantity(wholesale_product, 12, "kg", SaleMode.WHOLESALE, now=now)
        assert first.model_dump() == second.model_dump()

    def test_inputs_not_mutated(self, engine, now):
        product = _fifo_product()
        snapshot = copy.deepcopy(product)
        engine.allocate_quantity(product, 8, "kg", now=now)
        engine.allocate_amount(product, 50, "kg", now=now)
        assert product == snapshot


class TestAllocateAmount:

    @pytest.fixture
    def single_batch(self):
        return {
            "unit": "kg",
            "sellingPrice": 45,
            "batches": [{"id": "B1", "quantity": 100, "sellingPrice": 40}],
        }

    def test_inverse_of_quantity(self, engine, single_batch, now):
        quantity = engine.allocate_amount(single_batch, 200, "kg", now=now).quantity
        assert quantity == pytest.approx(5.0)
        assert engine.allocate_quantity(single_batch, 5, "kg", now=now).total_selling_price == pytest.approx(200.0)

    def test_result_in_requested_unit(self, engine, single_batch, now):
        result = engine.allocate_amount(single_batch, 20, "g", now=now)
        assert result.quantity_in_product_units == pytest.approx(0.5)
        assert result.quantity == pytest.approx(500.0)

    def test_walks_batches_by_value(self, engine, now):
        product = {
            "unit": "pcs",
            "batches": [
                {"id": "B1", "quantity": 2, "createdAt": "2026-01-01", "sellingPrice": 10},
                {"id": "B2", "quantity": 10, "createdAt": "2026-01-02", "sellingPrice": 20},
            ],
        }
        result = engine.allocate_amount(product, 60, "pcs", now=now)
        assert result.quantity == pytest.approx(4.0)
        assert [(d.batch_id, d.quantity) for d in result.used_batches] == [("B1", 2), ("B2", 2)]

    def test_skips_unpriced_batch(self, engine, now):
        product = {
            "unit": "pcs",
            "sellingPrice": 30,
            "batches": [
                {"id": "FREE", "quantity": 5, "createdAt": "2026-01-01", "sellingPrice": 0},
                {"id": "PAID", "quantity": 5, "createdAt": "2026-01-02", "sellingPrice": 20},
            ],
        }
        result = engine.allocate_amount(product, 40, "pcs", now=now)
        assert result.quantity == pytest.approx(2.0)
        assert [d.batch_id for d in result.used_batches] == ["PAID"]

    def test_remainder_beyond_stock_uses_default_price(self, engine, now):
        product = {"unit": "pcs", "sellingPrice": 20, "batches": [{"id": "B1", "quantity": 1, "sellingPrice": 10}]}
        assert engine.allocate_amount(product, 30, "pcs", now=now).quantity == pytest.approx(2.0)

    def test_no_usable_price(self, engine, now):
        result = engine.allocate_amount({"unit": "pcs"}, 30, "pcs", now=now)
        assert result.quantity == 0
        assert result.unspent_amount == 30

    @pytest.mark.parametrize("amount", [0, -5, None, "abc"])
    def test_non_positive_amount(self, engine, single_batch, now, amount):
        assert engine.allocate_amount(single_batch, amount, "kg", now=now).quantity == 0


class TestAllocateAmountWholesale:

    def test_amount_meeting_moq_uses_batch_wholesale(self, engine, wholesale_product, now):
        result = engine.allocate_amount(wholesale_product, 1000, "kg", SaleMode.WHOLESALE, now=now)
        assert result.quantity == pytest.approx(20.0)
        assert result.wholesale_moq_met is True

    def test_amount_exactly_at_moq(self, engine, wholesale_product, now):
        result = engine.allocate_amount(wholesale_product, 500, "kg", SaleMode.WHOLESALE, now=now)
        assert result.quantity == pytest.approx(10.0)

    def test_amount_below_moq_uses_product_wholesale(self, engine, wholesale_product, now):
        result = engine.allocate_amount(wholesale_product, 300, "kg", SaleMode.WHOLESALE, now=now)
        assert result.quantity == pytest.approx(5.0)
        assert result.wholesale_moq_met is False

        # Consistent with the quantity-driven direction
        quoted = engine.allocate_quantity(wholesale_product, result.quantity, "kg", SaleMode.WHOLESALE, now=now)
        assert quoted.total_selling_price == pytest.approx(300.0)

    def test_amount_below_moq_near_expiry(self, engine, wholesale_product, now):
        wholesale_product["batches"][0]["expiry"] = days_from_now(5)
        result = engine.allocate_amount(wholesale_product, 250, "kg", SaleMode.WHOLESALE, now=now)
        assert result.quantity == pytest.approx(5.0)

    def test_product_wholesale_below_batch_wholesale(self, engine, wholesale_product, now):
        wholesale_product["wholesalePrice"] = 40
        result = engine.allocate_amount(wholesale_product, 400, "kg", SaleMode.WHOLESALE, now=now)

        # 400 buys 8 kg at the batch's 50 and would reach the MOQ only at 40
        assert result.quantity == pytest.approx(8.0)
        assert result.wholesale_moq_met is False

        quoted = engine.allocate_quantity(wholesale_product, result.quantity, "kg", SaleMode.WHOLESALE, now=now)
        assert quoted.wholesale_moq_met is False
        assert quoted.total_selling_price <= 400.0


class TestClock:

    def test_naive_now_treated_as_utc(self, engine, wholesale_product, now):
        wholesale_product["batches"][0]["expiry"] = days_from_now(5)
        naive = datetime(2026, 3, 1, 12, 0)

        result = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=naive)
        expected = engine.allocate_quantity(wholesale_product, 5, "kg", SaleMode.WHOLESALE, now=now)
        assert result.model_dump() == expected.model_dump()
        assert result.used_batches[0].is_near_expiry is True

    def test_iso_string_now(self, engine, wholesale_product):
        result = engine.allocate_amount(wholesale_product, 300, "kg", SaleMode.WHOLESALE, now="2026-03-01T12:00:00")
        assert result.quantity == pytest.approx(5.0)

    def test_unreadable_now_falls_back_to_clock(self, engine, wholesale_product):
        result = engine.allocate_quantity(wholesale_product, 12, "kg", SaleMode.WHOLESALE, now="soon")
        assert result.wholesale_moq_met is True
