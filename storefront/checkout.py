import logging
from dataclasses import dataclass

from storefront.errors import ValidationError
from storefront.notifications import NotificationKind
from storefront.pricing import price

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """
    gateway contract: confirm that `payment_reference` paid `amount`.

    signature checking belongs to the payment gateway integration; this
    default accepts any non-empty reference, the way the storefront always has.
    """

    def verify(self, payment_reference, amount):
        return bool(payment_reference)


@dataclass(frozen=True)
class CheckoutResult:
    order: object
    confirmation_sent: bool | None

    def to_dict(self):
        return {
            'success': True,
            'orderId': self.order.id,
            'total': float(self.order.total),
            'confirmationSent': self.confirmation_sent,
        }


class CheckoutService:

    def __init__(self, session_factory, coupons, orders, users, notifier, payments=None):
        self._sessions = session_factory
        self._coupons = coupons
        self._orders = orders
        self._users = users
        self._notifier = notifier
        self._payments = payments or PaymentVerifier()

    def _coupon_for(self, coupon_code):
        if coupon_code is None or (isinstance(coupon_code, str) and not coupon_code.strip()):
            return None
        return self._coupons.require(coupon_code)

    def quote(self, cart, coupon_code=None):
        """price preview; an unknown coupon fails the whole quote"""
        coupon = self._coupon_for(coupon_code)
        return price(cart, coupon), coupon

    def place_order(self, user_id, cart, customer, payment_reference, coupon_code=None, email=None):
        if not isinstance(payment_reference, str) or not payment_reference.strip():
            raise ValidationError('Missing required field: paymentId')
        payment_reference = payment_reference.strip()

        # same function, same inputs as the preview
        quote, coupon = self.quote(cart, coupon_code)

        if not self._payments.verify(payment_reference, quote.total):
            raise ValidationError('Payment could not be verified')

        notification_id = None
        with self._sessions.begin() as session:
            order = self._orders.create(
                customer, cart, quote, payment_reference,
                user_id=user_id,
                coupon_code=coupon.code if coupon else None,
                session=session,
            )
            recipient = email or self._users.email_for(user_id, session=session)
            if recipient:
                notification_id = self._notifier.enqueue(
                    session, NotificationKind.CONFIRMATION, recipient, order_id=order.id,
                )
            else:
                logger.warning('order %s has no customer email, confirmation skipped', order.id)

        # committed; the email can no longer take the order down with it
        sent = self._notifier.deliver(notification_id) if notification_id is not None else None
        return CheckoutResult(order, sent)
