"""
Typed cart container.

A cart maps a product identifier (e.g. 'makhana-plain') to a line item. Carts
come from the client on every request and are frozen into an order as the
cart snapshot at checkout.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from storefront.config import MAX_AMOUNT, MAX_QUANTITY, MONEY_QUANTUM
from storefront.errors import InvalidCartError


def round_money(amount):
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_money(value):
    """parse a client supplied amount into a Decimal with 2 places"""
    if isinstance(value, bool):
        raise InvalidCartError('Price must be a number')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidCartError('Price must be a number')
    if not amount.is_finite():
        raise InvalidCartError('Price must be a number')
    if abs(amount) > MAX_AMOUNT:
        raise InvalidCartError('Price is out of range')
    try:
        return round_money(amount)
    except InvalidOperation:
        raise InvalidCartError('Price is out of range')


@dataclass(frozen=True)
class LineItem:
    unit_price: Decimal
    quantity: int

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidCartError('Quantity must be a whole number')
        if self.quantity < 1:
            raise InvalidCartError('Quantity must be at least 1')
        if self.quantity > MAX_QUANTITY:
            raise InvalidCartError(f'Quantity cannot exceed {MAX_QUANTITY}')
        if self.unit_price < 0:
            raise InvalidCartError('Price cannot be negative')
        if self.unit_price > MAX_AMOUNT or self.line_total > MAX_AMOUNT:
            raise InvalidCartError('Cart total is too large')

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class Cart:

    def __init__(self, lines):
        if not lines:
            raise InvalidCartError('Cart is empty')
        for product_id, line in lines.items():
            if not isinstance(product_id, str) or not product_id.strip():
                raise InvalidCartError('Cart contains an item without an id')
            if not isinstance(line, LineItem):
                raise InvalidCartError('Cart contains an invalid item')
        self._lines = dict(lines)
        if self.subtotal > MAX_AMOUNT:
            raise InvalidCartError('Cart total is too large')

    @classmethod
    def from_payload(cls, payload):
        """
        build a cart from request json:
            {"makhana-plain": {"unitPrice": 200, "quantity": 2}}
        the storefront js sends `price` instead of `unitPrice`, both work.
        """
        if not isinstance(payload, dict) or not payload:
            raise InvalidCartError('Cart is empty')

        lines = {}
        for product_id, item in payload.items():
            if not isinstance(item, dict):
                raise InvalidCartError('Cart contains an invalid item')
            price = item.get('unitPrice', item.get('price'))
            if price is None:
                raise InvalidCartError('Every cart item needs a price')
            quantity = item.get('quantity')
            # "2" from a form post is fine, 2.5 is not
            if isinstance(quantity, str) and quantity.strip().isdigit():
                quantity = int(quantity)
            lines[product_id] = LineItem(to_money(price), quantity)
        return cls(lines)

    @classmethod
    def from_snapshot(cls, snapshot):
        return cls({
            product_id: LineItem(Decimal(str(item['unitPrice'])), int(item['quantity']))
            for product_id, item in snapshot.items()
        })

    def to_snapshot(self):
        # prices as strings, json has no decimal type
        return {
            product_id: {'unitPrice': str(line.unit_price), 'quantity': line.quantity}
            for product_id, line in self._lines.items()
        }

    @property
    def subtotal(self):
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    def product_ids(self):
        return list(self._lines)

    def items(self):
        return self._lines.items()

    def __getitem__(self, product_id):
        return self._lines[product_id]

    def __contains__(self, product_id):
        return product_id in self._lines

    def __iter__(self):
        return iter(self._lines)

    def __len__(self):
        return len(self._lines)

    def __eq__(self, other):
        if not isinstance(other, Cart):
            return NotImplemented
        return self._lines == other._lines

    def __repr__(self):
        return f'Cart({self._lines!r})'
