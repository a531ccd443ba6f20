"""
Pricing engine.

`price(cart, coupon)` is the only place totals are computed. The coupon
preview and the checkout commit both call it, so the amount shown to the
customer is the amount recorded on the order.

    subtotal = sum(unit price x quantity)
    shipping = 0 at or above the free shipping threshold, flat fee below it,
               0 for a cart holding a single subscription line
    discount = percentage or fixed coupon value, clamped to [0, subtotal]
    total    = subtotal - discount + shipping
"""

from dataclasses import dataclass
from decimal import Decimal

from storefront.cart import round_money
from storefront.config import FLAT_SHIPPING_FEE, FREE_SHIPPING_THRESHOLD, SUBSCRIPTION_MARKER
from storefront.coupons import DiscountType

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class Quote:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    total: Decimal

    def to_dict(self):
        return {
            'subtotal': float(self.subtotal),
            'discount': float(self.discount),
            'shippingCost': float(self.shipping),
            'total': float(self.total),
        }


def is_subscription_only(cart):
    if len(cart) != 1:
        return False
    (product_id,) = cart.product_ids()
    return SUBSCRIPTION_MARKER in product_id.lower()


def calc_subtotal(cart):
    return round_money(cart.subtotal)


def calc_shipping(cart, subtotal):
    if is_subscription_only(cart):
        return ZERO
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return ZERO
    return round_money(FLAT_SHIPPING_FEE)


def calc_discount(subtotal, coupon=None):
    if coupon is None:
        return ZERO
    if coupon.discount_type is DiscountType.PERCENTAGE:
        discount = subtotal * coupon.discount_value / Decimal('100')
    else:
        discount = coupon.discount_value
    # never below zero, never more than the goods are worth
    discount = max(ZERO, min(discount, subtotal))
    return round_money(discount)


def price(cart, coupon=None):
    subtotal = calc_subtotal(cart)
    discount = calc_discount(subtotal, coupon)
    shipping = calc_shipping(cart, subtotal)
    total = round_money(subtotal - discount + shipping)
    return Quote(subtotal=subtotal, discount=discount, shipping=shipping, total=total)
