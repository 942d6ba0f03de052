# Overview: Service-layer operations for carts; line assembly, stock checks, discount and tax math.

"""
Cart Builder

A cart is client-local state: item refs, quantities and discounts. It
carries no prices. A reserving line carries the token of its server-side
hold; reserved_quantity is reported by the server and never read back
from a payload. Pricing reads the catalog every time the cart is
priced, so a held cart resumed tomorrow is priced at tomorrow's prices.
Offline replay is the one exception: lines may pin unit_price_cents to
the price the customer actually paid.

Money is integer cents. Percentages are basis points (1000 = 10%).
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict

from ..money import apply_bps
from ..validation import ValidationError, coerce_int, coerce_optional_int, optional_str
from . import catalog_service, inventory_service


DISCOUNT_FIXED = "fixed"
DISCOUNT_PERCENTAGE = "percentage"
VALID_DISCOUNT_TYPES = [DISCOUNT_FIXED, DISCOUNT_PERCENTAGE]

MAX_LINE_QUANTITY = 100_000


@dataclass
class CartLine:
    item_id: int
    quantity: int
    discount_type: str | None = None
    # cents for fixed, basis points for percentage
    discount_value: int = 0
    reserved_quantity: int = 0
    unit_price_cents: int | None = None
    reservation_token: str | None = None

    @property
    def has_discount(self) -> bool:
        return bool(self.discount_type) and self.discount_value > 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Cart:
    lines: list[CartLine] = field(default_factory=list)

    def find_line(self, item_id: int) -> CartLine | None:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {"lines": [line.to_dict() for line in self.lines]}

    @classmethod
    def from_dict(cls, data) -> "Cart":
        """
        Build a cart from a JSON payload: {"lines": [{"item_id", "quantity", ...}]}.
        Lines with the same item are merged.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("cart must be an object")
        raw_lines = data.get("lines", [])
        if not isinstance(raw_lines, list):
            raise ValidationError("cart.lines must be a list")

        cart = cls()
        for index, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                raise ValidationError(f"cart.lines[{index}] must be an object")
            item_id = coerce_int(raw.get("item_id"), f"cart.lines[{index}].item_id", minimum=1)
            quantity = coerce_int(raw.get("quantity", 1), f"cart.lines[{index}].quantity", maximum=MAX_LINE_QUANTITY)
            discount_type = raw.get("discount_type") or None
            if discount_type is not None and discount_type not in VALID_DISCOUNT_TYPES:
                raise ValidationError(
                    f"cart.lines[{index}].discount_type must be one of {VALID_DISCOUNT_TYPES}"
                )
            discount_value = coerce_int(raw.get("discount_value", 0), f"cart.lines[{index}].discount_value", minimum=0)
            token = optional_str(raw.get("reservation_token"), f"cart.lines[{index}].reservation_token", max_length=64)
            unit_price = coerce_optional_int(raw.get("unit_price_cents"), f"cart.lines[{index}].unit_price_cents", minimum=0)

            existing = cart.find_line(item_id)
            if existing:
                existing.quantity += quantity
                existing.reservation_token = existing.reservation_token or token
                continue
            cart.lines.append(
                CartLine(
                    item_id=item_id,
                    quantity=quantity,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    unit_price_cents=unit_price,
                    reservation_token=token,
                )
            )
        return cart


@dataclass
class PricedLine:
    item_id: int
    sku: str
    name: str
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    tax_cents: int
    tracks_inventory: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CartTotals:
    lines: list[PricedLine]
    gross_cents: int
    line_discount_cents: int
    subtotal_cents: int
    cart_discount_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "gross_cents": self.gross_cents,
            "line_discount_cents": self.line_discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "cart_discount_cents": self.cart_discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


# =============================================================================
# DISCOUNT MATH
# =============================================================================

def validate_discount(discount_type: str, value: int, line_subtotal_cents: int | None = None) -> None:
    """
    Raises:
        ValidationError: unknown type, negative value, percentage over 100%,
            or a fixed amount larger than the line it applies to
    """
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(f"Invalid discount type: {discount_type}. Must be one of {VALID_DISCOUNT_TYPES}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Discount value must be an integer")
    if value < 0:
        raise ValidationError("Discount value cannot be negative")
    if discount_type == DISCOUNT_PERCENTAGE and value > 10_000:
        raise ValidationError("Percentage discount cannot exceed 100%")
    if discount_type == DISCOUNT_FIXED and line_subtotal_cents is not None and value > line_subtotal_cents:
        raise ValidationError("Fixed discount cannot exceed the line subtotal")


def calculate_discount(subtotal_cents: int, discount_type: str | None, value: int) -> int:
    """Discount amount, clamped to [0, subtotal]."""
    if not discount_type or value <= 0 or subtotal_cents <= 0:
        return 0
    if discount_type == DISCOUNT_PERCENTAGE:
        amount = apply_bps(subtotal_cents, value)
    else:
        amount = value
    return max(0, min(amount, subtotal_cents))


# =============================================================================
# LINE OPERATIONS
# =============================================================================

def own_hold(line: CartLine) -> int:
    """
    Units the server actually holds for this line.

    Refreshes reserved_quantity and drops a token the server does not know.
    """
    held = inventory_service.held_quantity(line.reservation_token, line.item_id)
    if held == 0:
        line.reservation_token = None
    line.reserved_quantity = held
    return held


def load_reservations(cart: Cart) -> Cart:
    for line in cart.lines:
        own_hold(line)
    return cart


def _check_stock(item, line: CartLine | None, quantity: int) -> None:
    if not item.tracks_inventory:
        return
    held = own_hold(line) if line else 0
    available = inventory_service.get_available(item.id) + held
    if available < quantity:
        raise inventory_service.InsufficientStockError(item.id, quantity, max(available, 0))


def _sync_reservation(item, line: CartLine, target: int) -> None:
    """Move the line's soft hold to ``target`` units."""
    if not item.tracks_inventory:
        return
    hold = inventory_service.hold_stock(item.id, target, token=line.reservation_token)
    line.reservation_token = hold.token if hold else None
    line.reserved_quantity = hold.quantity if hold else 0


def add_item(cart: Cart, item_id: int, quantity: int = 1, *, reserve: bool = False) -> CartLine:
    """
    Add units of an item, merging with an existing line for the same item.

    Raises:
        ValidationError: quantity not positive or item inactive
        CatalogError: unknown item
        InsufficientStockError: not enough available stock for the merged quantity
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    item = catalog_service.get_sellable_item(item_id)
    if not item.is_active:
        raise ValidationError(f"Item {item.sku} is not available for sale", code="ITEM_INACTIVE")

    line = cart.find_line(item_id)
    new_quantity = quantity + (line.quantity if line else 0)
    if new_quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity must be <= {MAX_LINE_QUANTITY}")
    _check_stock(item, line, new_quantity)

    if line is None:
        line = CartLine(item_id=item_id, quantity=0)
        cart.lines.append(line)
    if reserve:
        _sync_reservation(item, line, new_quantity)
    line.quantity = new_quantity
    return line


def update_quantity(cart: Cart, item_id: int, quantity: int, *, reserve: bool | None = None) -> CartLine | None:
    """
    Set a line's quantity. Zero or less removes the line.

    When ``reserve`` is None the line keeps reserving if it already holds stock.
    """
    line = cart.find_line(item_id)
    if line is None:
        raise ValidationError(f"Item {item_id} is not in the cart", code="ITEM_NOT_IN_CART")
    if quantity <= 0:
        remove_item(cart, item_id)
        return None
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity must be <= {MAX_LINE_QUANTITY}")

    item = catalog_service.get_sellable_item(item_id)
    _check_stock(item, line, quantity)
    if reserve is None:
        reserve = line.reserved_quantity > 0
    if reserve:
        _sync_reservation(item, line, quantity)
    line.quantity = quantity
    return line


def remove_item(cart: Cart, item_id: int) -> None:
    line = cart.find_line(item_id)
    if line is None:
        return
    if line.reservation_token:
        inventory_service.release_hold(item_id, line.reservation_token)
        line.reservation_token = None
        line.reserved_quantity = 0
    cart.lines.remove(line)


def clear_cart(cart: Cart) -> None:
    for line in list(cart.lines):
        remove_item(cart, line.item_id)


def apply_item_discount(cart: Cart, item_id: int, discount_type: str, value: int) -> CartLine:
    line = cart.find_line(item_id)
    if line is None:
        raise ValidationError(f"Item {item_id} is not in the cart", code="ITEM_NOT_IN_CART")
    item = catalog_service.get_sellable_item(item_id)
    unit_price = line.unit_price_cents if line.unit_price_cents is not None else item.price_cents
    validate_discount(discount_type, value, unit_price * line.quantity)
    line.discount_type = discount_type
    line.discount_value = value
    return line


def remove_item_discount(cart: Cart, item_id: int) -> None:
    line = cart.find_line(item_id)
    if line is not None:
        line.discount_type = None
        line.discount_value = 0


def apply_customer_discount(cart: Cart, discount_bps: int) -> int:
    """
    Apply a customer-group percentage to every line without its own
    discount. Returns the number of lines touched.
    """
    validate_discount(DISCOUNT_PERCENTAGE, discount_bps)
    touched = 0
    if discount_bps == 0:
        return touched
    for line in cart.lines:
        if line.has_discount:
            continue
        line.discount_type = DISCOUNT_PERCENTAGE
        line.discount_value = discount_bps
        touched += 1
    return touched


def apply_customer_group_discount(cart: Cart, customer_id: int) -> int:
    customer = catalog_service.get_customer(customer_id)
    return apply_customer_discount(cart, customer.group_discount_bps or 0)


# =============================================================================
# VALIDATION + PRICING
# =============================================================================

def validate_cart(cart: Cart) -> list[dict]:
    """
    Full pre-checkout validation. Returns every problem found rather than
    raising on the first, so the caller sees the complete error set.
    """
    if cart is None or cart.is_empty:
        return [{"code": "EMPTY_CART", "message": "Cart is empty"}]

    errors: list[dict] = []
    items = catalog_service.get_sellable_items(line.item_id for line in cart.lines)
    for line in cart.lines:
        item = items.get(line.item_id)
        if item is None:
            errors.append({
                "code": "ITEM_NOT_FOUND",
                "item_id": line.item_id,
                "message": f"Item {line.item_id} not found",
            })
            continue
        if not item.is_active:
            errors.append({
                "code": "ITEM_INACTIVE",
                "item_id": item.id,
                "sku": item.sku,
                "message": f"{item.name} is no longer available",
            })
            continue
        if line.quantity <= 0:
            errors.append({
                "code": "INVALID_QUANTITY",
                "item_id": item.id,
                "message": f"Invalid quantity for {item.name}",
            })
            continue
        if item.tracks_inventory:
            available = inventory_service.get_available(item.id) + own_hold(line)
            if available < line.quantity:
                errors.append({
                    "code": "STOCK_UNAVAILABLE",
                    "item_id": item.id,
                    "sku": item.sku,
                    "requested": line.quantity,
                    "available": max(available, 0),
                    "message": f"Insufficient stock for {item.name}",
                })
    return errors


def price_line(line: CartLine, item) -> PricedLine:
    unit_price = line.unit_price_cents if line.unit_price_cents is not None else item.price_cents
    subtotal = unit_price * line.quantity
    discount = calculate_discount(subtotal, line.discount_type, line.discount_value)
    total = subtotal - discount
    return PricedLine(
        item_id=item.id,
        sku=item.sku,
        name=item.name,
        quantity=line.quantity,
        unit_price_cents=unit_price,
        tax_rate_bps=item.tax_rate_bps or 0,
        subtotal_cents=subtotal,
        discount_cents=discount,
        total_cents=total,
        tax_cents=apply_bps(total, item.tax_rate_bps or 0),
        tracks_inventory=bool(item.tracks_inventory),
    )


def price_cart(cart: Cart, cart_discount_cents: int = 0) -> CartTotals:
    """
    subtotal = sum of line totals (after line discounts)
    tax      = sum of per-line tax on the discounted line total
    total    = subtotal - cart discount + tax

    The cart discount is clamped to the subtotal so the total never goes negative.
    """
    if cart_discount_cents < 0:
        raise ValidationError("cart_discount_cents cannot be negative")

    items = catalog_service.get_sellable_items(line.item_id for line in cart.lines)
    priced = []
    for line in cart.lines:
        item = items.get(line.item_id)
        if item is None:
            raise catalog_service.CatalogError(
                f"Item {line.item_id} not found",
                code="ITEM_NOT_FOUND",
                details={"item_id": line.item_id},
            )
        priced.append(price_line(line, item))

    gross = sum(p.subtotal_cents for p in priced)
    line_discount = sum(p.discount_cents for p in priced)
    subtotal = sum(p.total_cents for p in priced)
    tax = sum(p.tax_cents for p in priced)
    cart_discount = min(cart_discount_cents, subtotal)

    return CartTotals(
        lines=priced,
        gross_cents=gross,
        line_discount_cents=line_discount,
        subtotal_cents=subtotal,
        cart_discount_cents=cart_discount,
        tax_cents=tax,
        total_cents=subtotal - cart_discount + tax,
    )


def cart_summary(cart: Cart, cart_discount_cents: int = 0) -> dict:
    errors = validate_cart(cart)
    summary = {
        "line_count": len(cart.lines),
        "item_count": cart.item_count,
        "is_valid": not errors,
        "errors": errors,
    }
    if cart.is_empty or any(e["code"] == "ITEM_NOT_FOUND" for e in errors):
        summary["totals"] = None
    else:
        summary["totals"] = price_cart(cart, cart_discount_cents).to_dict()
    return summary
