"""Pydantic data models for catalog snapshots and resolved orders."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchConfidence(str, Enum):
    """How certain a catalog match is. Ordered high > medium > low > no_match."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NO_MATCH = "no_match"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, MatchConfidence):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, MatchConfidence):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, MatchConfidence):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, MatchConfidence):
            return NotImplemented
        return self.rank >= other.rank


_CONFIDENCE_RANK = {
    MatchConfidence.NO_MATCH: 0,
    MatchConfidence.LOW: 1,
    MatchConfidence.MEDIUM: 2,
    MatchConfidence.HIGH: 3,
}


# Largest quantity and unit price accepted on one order line.
MAX_LINE_QUANTITY = Decimal("1000000")
MAX_UNIT_PRICE = Decimal("10000000")


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    NOT_FOUND = "not_found"


class PriceSource(str, Enum):
    CUSTOMER = "customer"
    REGULAR = "regular"


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CatalogProduct(BaseModel):
    """Sellable product as captured in the catalog snapshot."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1, description="Catalog identifier")
    name: str = Field(..., min_length=1, description="Display name")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    barcode: Optional[str] = Field(None, description="EAN/UPC barcode")
    price: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=MAX_UNIT_PRICE,
        description="Regular unit price (0 when unknown)",
    )
    quantity: int = Field(default=0, ge=0, description="On-hand quantity")
    unit: str = Field(default="piece", description="Unit of measure")
    category: Optional[str] = None
    is_tobacco: bool = False


class CustomerPriceRecord(BaseModel):
    """Previously negotiated price for one customer-product pair."""

    model_config = ConfigDict(frozen=True)

    customer_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    last_price: Decimal = Field(
        ...,
        ge=0,
        le=MAX_UNIT_PRICE,
        description="Last negotiated unit price",
    )
    original_price: Optional[Decimal] = Field(
        None,
        ge=0,
        le=MAX_UNIT_PRICE,
        description="Catalog price when the price was negotiated",
    )
    valid_until: Optional[datetime] = Field(None, description="Expiry (None = open-ended)")
    price_locked: bool = Field(default=False, description="Locked prices never expire")
    times_ordered: int = Field(default=0, ge=0)
    total_quantity_ordered: Decimal = Field(default=Decimal("0"), ge=0)
    last_unit: Optional[str] = None
    last_order_date: Optional[datetime] = None
    discount_percentage: Optional[float] = None

    def is_valid(self, now: datetime) -> bool:
        """Locked, open-ended, or not yet expired."""
        if self.price_locked or self.valid_until is None:
            return True
        return as_utc(self.valid_until) > as_utc(now)


class OrderCandidateLine(BaseModel):
    """Unresolved fragment of order text with guessed quantity/unit/name."""

    original_text: str = Field(..., description="Raw text span the line came from")
    quantity: Decimal = Field(default=Decimal("1"), gt=0, le=MAX_LINE_QUANTITY)
    unit: str = Field(default="piece", min_length=1)
    product_name: str = Field(..., min_length=1)
    price: Optional[Decimal] = Field(
        None, ge=0, le=MAX_UNIT_PRICE, description="Price typed by the user, if any"
    )
    parse_confidence: MatchConfidence = MatchConfidence.MEDIUM
    variations: List[str] = Field(default_factory=list)

    @field_validator("parse_confidence")
    @classmethod
    def validate_parse_confidence(cls, v: MatchConfidence) -> MatchConfidence:
        if v is MatchConfidence.NO_MATCH:
            raise ValueError("parse_confidence must be high, medium or low")
        return v


class ResolvedOrderLine(BaseModel):
    """Candidate line resolved against the catalog and price history."""

    original_text: str
    product: Optional[CatalogProduct] = None
    product_name: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    total_price: Decimal
    regular_price: Optional[Decimal] = None
    confidence: MatchConfidence
    match_strategy: Optional[str] = None
    stock_status: StockStatus
    current_stock: Optional[int] = None
    in_stock: bool = False
    price_source: PriceSource = PriceSource.REGULAR
    discount_percentage: float = Field(default=0.0, ge=0, le=100)
    price_alert: bool = False
    manual_price: bool = False
    suggestions: List[str] = Field(default_factory=list)

    @property
    def savings(self) -> Decimal:
        """Savings against the regular price for history-priced lines."""
        if self.price_source is not PriceSource.CUSTOMER or self.regular_price is None:
            return Decimal("0")
        per_unit = self.regular_price - self.unit_price
        if per_unit <= 0:
            return Decimal("0")
        return per_unit * self.quantity


class OrderSummary(BaseModel):
    """Order totals."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal
    total_savings: Decimal
    line_count: int
    all_in_stock: bool


IssueCode = Literal[
    "NO_MATCH",
    "LOW_CONFIDENCE",
    "PRICE_ALERT",
    "OUT_OF_STOCK",
    "LOW_STOCK",
    "UNUSUAL_QUANTITY",
    "MANUAL_PRICE",
]


class OrderIssue(BaseModel):
    """Advisory finding about a resolved order."""

    line_index: Optional[int] = None
    code: IssueCode
    message: str


class ResolvedOrder(BaseModel):
    """Complete resolution result for one order."""

    customer_id: Optional[str] = None
    currency: str
    parser: Literal["completion", "local", "manual"]
    lines: List[ResolvedOrderLine]
    summary: OrderSummary
    issues: List[OrderIssue] = Field(default_factory=list)


class ParseOrderRequest(BaseModel):
    """Request payload for the parse endpoint."""

    text: str = Field(..., min_length=1, max_length=20000)


class ParseOrderResponse(BaseModel):
    """Response payload for the parse endpoint."""

    parser: Literal["completion", "local"]
    lines: List[OrderCandidateLine]


class ResolveOrderRequest(BaseModel):
    """Request payload for the resolve endpoint (carries the snapshots)."""

    text: str = Field(..., min_length=1, max_length=20000)
    customer_id: Optional[str] = None
    catalog: List[CatalogProduct] = Field(..., description="Catalog snapshot")
    price_history: List[CustomerPriceRecord] = Field(default_factory=list)
