"""
Tax / Pricing Calculator

Shared arithmetic for tax-inclusive and tax-exclusive prices, used by sales,
invoices, purchases and refunds. Values stay at full Decimal precision until
``quantize_money`` is applied at the persistence boundary.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Mapping, Tuple, Union

from backoffice.core.exceptions import ValidationError

Number = Union[Decimal, int, float, str]

MONEY = Decimal("0.01")
UNIT = Decimal("1")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 rather than its binary expansion
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def _check_price(price: Decimal, label: str = "Price"):
    if price < 0:
        raise ValidationError(f"{label} cannot be negative")


def _check_rate(rate: Decimal):
    if rate < 0 or rate > HUNDRED:
        raise ValidationError("Tax rate must be between 0 and 100")


def _check_quantity(quantity: int):
    if quantity is None or int(quantity) != quantity or quantity < 1:
        raise ValidationError("Quantity must be a positive whole number")


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricedLine:
    """An invoice line after GST / non-GST conversion"""
    selling_price: Decimal
    quantity: int
    tax_rate: Decimal
    price: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_total: Decimal
    discount: Decimal
    round_off: Decimal
    total: Decimal


def strip_tax(selling_price: Number, tax_rate: Number) -> Tuple[Decimal, Decimal]:
    """Split a tax-inclusive price into (pre-tax price, tax amount)."""
    selling_price = to_decimal(selling_price)
    rate = to_decimal(tax_rate)
    _check_price(selling_price, "Selling price")
    _check_rate(rate)

    pre_tax_price = selling_price / (1 + rate / HUNDRED)
    return pre_tax_price, selling_price - pre_tax_price


def line_amounts(pre_tax_price: Number, quantity: int, tax_rate: Number) -> LineAmounts:
    """Tax and tax-inclusive total for ``quantity`` units at a pre-tax price."""
    price = to_decimal(pre_tax_price)
    rate = to_decimal(tax_rate)
    _check_price(price)
    _check_rate(rate)
    _check_quantity(quantity)

    subtotal = price * quantity
    tax_amount = subtotal * (rate / HUNDRED)
    return LineAmounts(subtotal=subtotal, tax_amount=tax_amount, total=subtotal + tax_amount)


def price_line(selling_price: Number, quantity: int, tax_rate: Number, gst_enabled: bool) -> PricedLine:
    """
    Price one line from its tax-inclusive selling price.

    GST mode strips the tax out of the selling price and charges it back as a
    separate amount; non-GST mode sells at the full selling price with no tax.
    """
    selling_price = to_decimal(selling_price)
    rate = to_decimal(tax_rate)

    if gst_enabled:
        price, _ = strip_tax(selling_price, rate)
        effective_rate = rate
    else:
        _check_price(selling_price, "Selling price")
        _check_rate(rate)
        price = selling_price
        effective_rate = ZERO

    amounts = line_amounts(price, quantity, effective_rate)
    return PricedLine(
        selling_price=selling_price,
        quantity=quantity,
        tax_rate=effective_rate,
        price=price,
        subtotal=amounts.subtotal,
        tax_amount=amounts.tax_amount,
        total=amounts.total,
    )


def apply_gst_mode(lines: Iterable[Mapping], gst_enabled: bool) -> List[PricedLine]:
    """Re-price every line for the given mode, existing lines included."""
    return [
        price_line(line["selling_price"], line["quantity"], line.get("tax_rate", ZERO), gst_enabled)
        for line in lines
    ]


def order_totals(lines: Iterable, discount: Number = ZERO) -> OrderTotals:
    """
    Sum line subtotals and taxes, subtract the discount and round the result
    to a whole amount. ``round_off`` is the signed adjustment that got it there
    (fractions below .5 round down, .5 and above round up).
    """
    discount = to_decimal(discount or ZERO)
    if discount < 0:
        raise ValidationError("Discount cannot be negative")

    subtotal = ZERO
    tax_total = ZERO
    for line in lines:
        subtotal += line.subtotal
        tax_total += line.tax_amount

    subtotal = quantize_money(subtotal)
    tax_total = quantize_money(tax_total)
    raw_total = subtotal + tax_total - discount
    if raw_total < 0:
        raise ValidationError("Discount cannot exceed the order total")

    total = raw_total.quantize(UNIT, rounding=ROUND_HALF_UP)
    return OrderTotals(
        subtotal=subtotal,
        tax_total=tax_total,
        discount=quantize_money(discount),
        round_off=quantize_money(total - raw_total),
        total=quantize_money(total),
    )
