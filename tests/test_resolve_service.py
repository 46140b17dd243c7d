"""End-to-end tests for the order resolution service."""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ordproc.config import OrderConfig
from ordproc.exceptions import ResolutionCancelledError, SnapshotError
from ordproc.models import (
    CustomerPriceRecord,
    MatchConfidence,
    OrderCandidateLine,
    PriceSource,
    StockStatus,
)
from ordproc.pricing import round_money
from ordproc.services.resolve_service import OrderResolutionService

CUSTOMER_ID = "cust-1"


@pytest.fixture
def service(order_config) -> OrderResolutionService:
    return OrderResolutionService(order_config)


class FakeCompletionParser:
    """Stands in for the chat-model parser."""

    available = True

    def __init__(self, lines):
        self.lines = lines
        self.calls = []

    def parse(self, raw_text):
        self.calls.append(raw_text)
        return self.lines


def test_explicit_price_overrides_catalog_price(service, catalog):
    order = service.resolve("10 cases of watermelon adalya $250", None, catalog)

    assert order.parser == "local"
    line = order.lines[0]
    assert line.product.product_id == "p-adalya-wm"
    assert line.confidence is MatchConfidence.HIGH
    assert line.quantity == Decimal("10")
    assert line.unit == "case"
    assert line.unit_price == Decimal("250")
    assert line.total_price == Decimal("2500.00")
    assert line.regular_price == Decimal("22.00")
    assert line.manual_price is True
    assert line.stock_status is StockStatus.IN_STOCK
    assert order.summary.subtotal == Decimal("2500.00")
    assert order.summary.tax == Decimal("250.00")
    assert order.summary.total == Decimal("2750.00")
    assert [issue.code for issue in order.issues] == ["MANUAL_PRICE"]


def test_customer_price_yields_savings(service, catalog, price_records):
    order = service.resolve("5 boxes mint fakher", CUSTOMER_ID, catalog, price_records)

    line = order.lines[0]
    assert line.product.product_id == "p-fakher-mint"
    assert line.confidence is MatchConfidence.MEDIUM
    assert line.match_strategy == "variation"
    assert line.unit_price == Decimal("18.00")
    assert line.price_source is PriceSource.CUSTOMER
    assert line.discount_percentage == pytest.approx(25.0)
    assert line.savings == Decimal("30.00")
    assert line.suggestions == []
    assert order.summary.total_savings == Decimal("30.00")
    assert order.customer_id == CUSTOMER_ID


def test_unknown_item_is_unmatched(service, catalog):
    order = service.resolve("xyz-unknown-item 3 pieces", None, catalog)

    line = order.lines[0]
    assert line.product is None
    assert line.confidence is MatchConfidence.NO_MATCH
    assert line.stock_status is StockStatus.NOT_FOUND
    assert line.in_stock is False
    assert line.suggestions == []
    assert line.unit_price == Decimal("0")
    assert line.total_price == Decimal("0.00")
    assert line.quantity == Decimal("3")
    assert [issue.code for issue in order.issues] == ["NO_MATCH"]


def test_unmatched_line_keeps_typed_price(service, catalog):
    line = service.resolve("2 boxes xyz-unknown-item $4", None, catalog).lines[0]

    assert line.confidence is MatchConfidence.NO_MATCH
    assert line.unit_price == Decimal("4")
    assert line.total_price == Decimal("8.00")
    assert line.manual_price is True


def test_lines_keep_input_order(service, catalog):
    text = "2 silicone hose, 3 packs coconut coals, xyz-unknown-item, 1 case watermelon adalya"

    order = service.resolve(text, None, catalog)

    assert [line.original_text for line in order.lines] == [
        "2 silicone hose",
        "3 packs coconut coals",
        "xyz-unknown-item",
        "1 case watermelon adalya",
    ]
    assert [line.stock_status for line in order.lines] == [
        StockStatus.IN_STOCK,
        StockStatus.OUT_OF_STOCK,
        StockStatus.NOT_FOUND,
        StockStatus.IN_STOCK,
    ]
    assert order.summary.line_count == 4
    assert order.summary.all_in_stock is False


def test_line_totals_match_unit_price_times_quantity(service, catalog, price_records):
    text = "2 silicone hose, 3 packs coconut coals, 5 boxes mint fakher, 2.5 kg watermelon adalya"

    order = service.resolve(text, CUSTOMER_ID, catalog, price_records)

    for line in order.lines:
        assert line.total_price == round_money(line.quantity * line.unit_price)
    assert order.summary.subtotal == sum(line.total_price for line in order.lines)
    assert order.summary.total == order.summary.subtotal + order.summary.tax


def test_low_stock_issue(service, catalog):
    order = service.resolve("5 silicone hose", None, catalog)

    assert order.lines[0].stock_status is StockStatus.LOW_STOCK
    assert order.lines[0].current_stock == 3
    assert [issue.code for issue in order.issues] == ["LOW_STOCK"]


def test_fuzzy_line_carries_suggestions(catalog):
    catalog = catalog + [
        catalog[2].model_copy(
            update={"product_id": "p-coco-coals-2", "name": "Coconut Coals Cube"}
        ),
    ]
    config = OrderConfig(_env_file=None, mock=True)
    order = OrderResolutionService(config).resolve("coal coconut", None, catalog)

    line = order.lines[0]
    assert line.confidence is MatchConfidence.LOW
    assert line.suggestions == ["Coconut Coals Cube"]
    assert "LOW_CONFIDENCE" in [issue.code for issue in order.issues]


def test_expired_customer_price_uses_regular(service, catalog):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    records = [
        CustomerPriceRecord(
            customer_id=CUSTOMER_ID,
            product_id="p-fakher-mint",
            last_price=Decimal("18.00"),
            valid_until=now - timedelta(days=1),
        )
    ]

    order = service.resolve("1 box mint fakher", CUSTOMER_ID, catalog, records, now=now)

    assert order.lines[0].price_source is PriceSource.REGULAR
    assert order.lines[0].unit_price == Decimal("24.00")


def test_resolve_lines_manual_entry(service, catalog):
    lines = [
        OrderCandidateLine(
            original_text="Silicone Hose x2",
            quantity=Decimal("2"),
            product_name="Silicone Hose",
        )
    ]

    order = service.resolve_lines(lines, None, catalog)

    assert order.parser == "manual"
    assert order.lines[0].total_price == Decimal("30.00")


def test_resolve_batch(service, catalog, price_records):
    orders = service.resolve_batch(
        ["5 boxes mint fakher", "2 silicone hose"], CUSTOMER_ID, catalog, price_records
    )

    assert [order.lines[0].product.product_id for order in orders] == [
        "p-fakher-mint",
        "p-hose",
    ]


def test_completion_parser_is_preferred(order_config, catalog):
    fake = FakeCompletionParser(
        [
            OrderCandidateLine(
                original_text="two hoses",
                quantity=Decimal("2"),
                product_name="silicone hose",
            )
        ]
    )
    service = OrderResolutionService(order_config, completion_parser=fake)

    order = service.resolve("two hoses", None, catalog)

    assert fake.calls == ["two hoses"]
    assert order.parser == "completion"
    assert order.lines[0].product.product_id == "p-hose"


def test_empty_text_gives_empty_order(service, catalog):
    order = service.resolve("", None, catalog)

    assert order.lines == []
    assert order.summary.total == Decimal("0.00")
    assert order.issues == []


def test_single_worker_matches_pool(catalog, price_records):
    text = "2 silicone hose, 3 packs coconut coals, 5 boxes mint fakher"
    serial = OrderResolutionService(OrderConfig(_env_file=None, mock=True, max_workers=1))
    pooled = OrderResolutionService(OrderConfig(_env_file=None, mock=True, max_workers=8))

    assert serial.resolve(text, CUSTOMER_ID, catalog, price_records) == pooled.resolve(
        text, CUSTOMER_ID, catalog, price_records
    )


def test_cancelled_resolution_raises(service, catalog):
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(ResolutionCancelledError):
        service.resolve("2 silicone hose", None, catalog, cancel_event=cancel_event)


def test_missing_catalog_is_rejected(service):
    with pytest.raises(SnapshotError):
        service.resolve("2 silicone hose", None, None)


def test_history_for_other_customer_is_rejected(service, catalog, price_records):
    with pytest.raises(SnapshotError):
        service.resolve("5 boxes mint fakher", "someone-else", catalog, price_records)


def test_resolution_does_not_touch_snapshots(service, catalog, price_records):
    before_catalog = [product.model_dump() for product in catalog]
    before_history = [record.model_dump() for record in price_records]

    service.resolve("5 boxes mint fakher, 2 silicone hose", CUSTOMER_ID, catalog, price_records)

    assert [product.model_dump() for product in catalog] == before_catalog
    assert [record.model_dump() for record in price_records] == before_history


def test_oversized_numbers_fall_back_to_defaults(service, catalog):
    order = service.resolve(
        "99999999999999999999999999999 cases watermelon adalya; "
        "10 cases watermelon adalya $99999999999999999999999999999",
        None,
        catalog,
    )

    huge_quantity, huge_price = order.lines
    assert huge_quantity.product.product_id == "p-adalya-wm"
    assert huge_quantity.quantity == Decimal("1")
    assert huge_quantity.total_price == round_money(huge_quantity.unit_price)
    assert huge_price.quantity == Decimal("10")
    assert huge_price.manual_price is False
    assert huge_price.price_source is PriceSource.REGULAR
    assert huge_price.total_price == round_money(huge_price.unit_price * 10)
