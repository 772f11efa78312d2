"""
Order sales tax resolver.

Handles:
- Buyer/seller ZIP resolution and declared-state validation
- Origin-based vs destination-based jurisdiction sourcing
- Order-level tax exemption
- Per-product custom tax rates (scale the product subtotal)
- Group overrides that reduce the state and city rate components
- Per-product, per-component cent rounding
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

from tax_service.log import get_logger
from tax_service.rates import (
    JurisdictionIndex,
    JurisdictionRecord,
    abbreviate_state,
)

logger = get_logger(__name__)

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


class TaxRuleType(Enum):
    """Which party's jurisdiction supplies the rates."""

    ORIGIN_BASED = "Origin-Based"  # seller's jurisdiction
    DESTINATION_BASED = "Destination-Based"  # buyer's jurisdiction

    @classmethod
    def parse(cls, value: Optional[str]) -> "TaxRuleType":
        """Anything other than "Origin-Based" sources from the destination."""
        if value == cls.ORIGIN_BASED.value:
            return cls.ORIGIN_BASED
        return cls.DESTINATION_BASED


class OverrideGroup(Enum):
    """Order-level discount policy applied to the state and city rates."""

    NONE = ""
    HALF_REDUCTION = "50% Reduction"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OverrideGroup":
        if value == cls.HALF_REDUCTION.value:
            return cls.HALF_REDUCTION
        return cls.NONE


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TaxResolutionError(ValueError):
    """An order failed validation; no tax was computed."""

    kind = "invalid"


class InvalidZipError(TaxResolutionError):
    kind = "not_found"

    def __init__(self, message: str = "Invalid ZIP code.") -> None:
        super().__init__(message)


class StateMismatchError(TaxResolutionError):
    """A declared state does not match the state its ZIP code belongs to."""

    kind = "mismatch"

    def __init__(
        self, party: str, zip_code: str, declared: Optional[str], expected: str
    ) -> None:
        self.party = party
        self.zip_code = zip_code
        self.declared = declared
        self.expected = expected
        super().__init__(
            f"{party} ZIP code {zip_code} does not match state {declared}. "
            f"Expected: {expected}."
        )


class InvalidOrderError(TaxResolutionError):
    """An order's products are malformed or out of range."""

    kind = "invalid"


# ---------------------------------------------------------------------------
# Order model
# ---------------------------------------------------------------------------


# Upper bounds keep every product of price, quantity and rate well inside
# the default 28-digit Decimal context.
MAX_PRICE = Decimal("1000000000000")
MAX_QUANTITY = 1_000_000
MAX_CUSTOM_TAX_RATE = Decimal("1000")


def _to_decimal(value: Any, name: str, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, bool):
        raise InvalidOrderError(f"Invalid {name}: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidOrderError(f"Invalid {name}: {value!r}") from None


def _to_quantity(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool):
        raise InvalidOrderError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    amount = _to_decimal(value, "quantity")
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise InvalidOrderError(f"Quantity must be a whole number: {value!r}")
    return int(amount)


def _check_amount(value: Decimal, name: str, limit: Decimal) -> None:
    if not value.is_finite() or value < 0 or value > limit:
        raise InvalidOrderError(f"{name} must be between 0 and {limit}: {value}")


@dataclass
class LineItem:
    """
    A product line on an order.

    Price and custom rate must be finite and non-negative, quantity a
    non-negative whole number; construction raises InvalidOrderError
    otherwise.
    """

    price: Decimal
    quantity: int = 1
    use_custom_tax: bool = False
    custom_tax_rate: Decimal = _ZERO  # percent

    def __post_init__(self) -> None:
        _check_amount(self.price, "Price", MAX_PRICE)
        _check_amount(self.custom_tax_rate, "Custom tax rate", MAX_CUSTOM_TAX_RATE)
        if (
            isinstance(self.quantity, bool)
            or not isinstance(self.quantity, int)
            or not 0 <= self.quantity <= MAX_QUANTITY
        ):
            raise InvalidOrderError(
                f"Quantity must be a whole number between 0 and {MAX_QUANTITY}: "
                f"{self.quantity!r}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        if not isinstance(data, dict):
            raise InvalidOrderError(f"Product must be an object: {data!r}")
        return cls(
            price=_to_decimal(data.get("price"), "price"),
            quantity=_to_quantity(data.get("quantity", 1)),
            use_custom_tax=bool(data.get("useCustomTax", False)),
            custom_tax_rate=_to_decimal(data.get("customTaxRate"), "customTaxRate"),
        )

    @property
    def subtotal(self) -> Decimal:
        """Price times quantity, scaled by the custom rate if one applies."""
        amount = self.price * self.quantity
        if self.use_custom_tax:
            amount = amount * (self.custom_tax_rate / _HUNDRED)
        return amount


@dataclass
class OrderRequest:
    """An order submitted for tax calculation."""

    seller_zip: str
    seller_state: Optional[str]
    buyer_zip: str
    buyer_state: Optional[str]
    products: list[LineItem] = field(default_factory=list)
    delivery_method: Any = None
    tax_rule_type: Optional[str] = None  # raw label, echoed back
    is_tax_exempt: bool = False
    tax_override_group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "OrderRequest":
        if not isinstance(data, dict):
            raise InvalidOrderError("Order must be an object")
        products = data.get("products") or []
        if not isinstance(products, list):
            raise InvalidOrderError("Order products must be a list")
        return cls(
            seller_zip=str(data["sellerZip"]),
            seller_state=data.get("sellerState"),
            buyer_zip=str(data["buyerZip"]),
            buyer_state=data.get("buyerState"),
            products=[LineItem.from_dict(p) for p in products],
            delivery_method=data.get("deliveryMethod"),
            tax_rule_type=data.get("taxRuleType"),
            is_tax_exempt=bool(data.get("isTaxExempt", False)),
            tax_override_group=data.get("taxOverrideGroup"),
        )

    @property
    def sourcing(self) -> TaxRuleType:
        return TaxRuleType.parse(self.tax_rule_type)

    @property
    def override_group(self) -> OverrideGroup:
        return OverrideGroup.parse(self.tax_override_group)


@dataclass
class TaxBreakdown:
    """Priced result of a tax calculation."""

    delivery_method: Any
    tax_rule_type: Optional[str]
    tax_region: str
    total_price: Decimal
    state_tax: Decimal
    county_tax: Decimal
    city_tax: Decimal
    special_tax: Decimal

    @property
    def total_tax(self) -> Decimal:
        return self.state_tax + self.county_tax + self.city_tax + self.special_tax

    @property
    def final_total(self) -> Decimal:
        return self.total_price + self.total_tax

    def to_dict(self) -> dict[str, Any]:
        """Render the response body; money values are two-decimal strings."""
        return {
            "deliveryMethod": self.delivery_method,
            "taxRuleType": self.tax_rule_type,
            "taxRegion": self.tax_region,
            "totalPrice": format_money(self.total_price),
            "totalTax": format_money(self.total_tax),
            "finalTotal": format_money(self.final_total),
            "breakdown": {
                "stateTax": format_money(self.state_tax),
                "countyTax": format_money(self.county_tax),
                "cityTax": format_money(self.city_tax),
                "specialTax": format_money(self.special_tax),
            },
        }


def _round_tax(amount: Decimal) -> Decimal:
    """Round to the nearest cent, halves away from zero."""
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    return f"{_round_tax(amount):f}"


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TaxResolver:
    """
    Computes the tax breakdown of an order against a jurisdiction index.

    Stateless apart from the read-only index, so one resolver can serve
    any number of concurrent requests.
    """

    def __init__(self, index: JurisdictionIndex) -> None:
        self.index = index

    def _resolve_jurisdictions(
        self, order: OrderRequest
    ) -> tuple[JurisdictionRecord, JurisdictionRecord]:
        """Look up and validate (buyer, seller) jurisdictions, in that order."""
        buyer = self.index.lookup(order.buyer_zip)
        seller = self.index.lookup(order.seller_zip)
        if buyer is None or seller is None:
            raise InvalidZipError()

        buyer_state = abbreviate_state(order.buyer_state)
        if buyer.state_code != buyer_state:
            raise StateMismatchError(
                "Buyer", order.buyer_zip, buyer_state, buyer.state_code
            )

        seller_state = abbreviate_state(order.seller_state)
        if seller.state_code != seller_state:
            raise StateMismatchError(
                "Seller", order.seller_zip, seller_state, seller.state_code
            )

        return buyer, seller

    def resolve(self, order: OrderRequest) -> TaxBreakdown:
        """
        Calculate the tax breakdown for an order.

        Raises InvalidZipError or StateMismatchError before any tax is
        accrued when the order's locations do not validate.
        """
        try:
            buyer, seller = self._resolve_jurisdictions(order)
        except TaxResolutionError as e:
            logger.info("Rejected order: %s", e)
            raise

        if order.sourcing is TaxRuleType.ORIGIN_BASED:
            jurisdiction = seller
        else:
            jurisdiction = buyer

        state_rate = Decimal(str(jurisdiction.state_rate))
        city_rate = Decimal(str(jurisdiction.city_rate))
        county_rate = Decimal(str(jurisdiction.county_rate))
        special_rate = Decimal(str(jurisdiction.special_rate))
        if order.override_group is OverrideGroup.HALF_REDUCTION:
            state_rate /= 2
            city_rate /= 2

        total_price = _ZERO
        state_tax = county_tax = city_tax = special_tax = _ZERO

        for item in order.products:
            subtotal = item.subtotal
            total_price += subtotal

            if order.is_tax_exempt:
                continue

            state_tax += _round_tax(subtotal * state_rate / _HUNDRED)
            county_tax += _round_tax(subtotal * county_rate / _HUNDRED)
            city_tax += _round_tax(subtotal * city_rate / _HUNDRED)
            special_tax += _round_tax(subtotal * special_rate / _HUNDRED)

        return TaxBreakdown(
            delivery_method=order.delivery_method,
            tax_rule_type=order.tax_rule_type,
            tax_region=jurisdiction.region_name,
            total_price=total_price,
            state_tax=state_tax,
            county_tax=county_tax,
            city_tax=city_tax,
            special_tax=special_tax,
        )


def calculate_tax(order: OrderRequest, index: JurisdictionIndex) -> TaxBreakdown:
    """Resolve a single order against an index."""
    return TaxResolver(index).resolve(order)
