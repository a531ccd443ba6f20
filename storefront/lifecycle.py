"""
Order lifecycle.

    Processing -> Shipped -> Delivered
    Processing -> Cancelled
    Shipped    -> Cancelled

Delivered and Cancelled are final. Setting an order to the status it already
has is accepted and does nothing, so a double click in the admin panel cannot
send the same email twice.

Each effective transition writes the new status, an audit row and at most one
outbox entry in a single transaction. The email goes out after the commit; if
it fails the status change stands and the result says so.
"""

import logging
from dataclasses import dataclass

from storefront.errors import InvalidTransitionError
from storefront.notifications import NotificationKind
from storefront.orders import OrderStatus

logger = logging.getLogger(__name__)

TRANSITIONS = {
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition(previous, new, permissive=False):
    if previous == new:
        return True
    if permissive:
        return True
    return new in TRANSITIONS[previous]


def check_transition(previous, new, permissive=False):
    if not can_transition(previous, new, permissive):
        raise InvalidTransitionError(
            f'Cannot change order status from {previous.value} to {new.value}',
            previous=previous.value,
            new=new.value,
        )


def notification_for(previous, new):
    """the one email a transition triggers, or None"""
    if previous == new:
        return None
    if new is OrderStatus.DELIVERED:
        return NotificationKind.DELIVERED
    if new is OrderStatus.CANCELLED:
        return NotificationKind.CANCELLED
    if new is OrderStatus.SHIPPED and previous is OrderStatus.PROCESSING:
        return NotificationKind.SHIPPED
    return None


@dataclass(frozen=True)
class TransitionResult:
    order_id: int
    previous_status: OrderStatus
    new_status: OrderStatus
    notification: NotificationKind | None = None
    # None when nothing had to be sent
    notification_sent: bool | None = None

    @property
    def changed(self):
        return self.previous_status != self.new_status

    @property
    def degraded(self):
        """status saved but the customer email did not go out"""
        return self.notification is not None and not self.notification_sent

    def to_dict(self):
        return {
            'orderId': self.order_id,
            'previousStatus': self.previous_status.value,
            'newStatus': self.new_status.value,
            'changed': self.changed,
            'notification': self.notification.value if self.notification else None,
            'notificationSent': self.notification_sent,
        }


class OrderLifecycle:

    def __init__(self, session_factory, orders, users, notifier, permissive=False):
        self._sessions = session_factory
        self._orders = orders
        self._users = users
        self._notifier = notifier
        self.permissive = permissive

    def transition(self, order_id, new_status, changed_by='admin'):
        new_status = OrderStatus.parse(new_status)
        notification_id = None
        kind = None

        with self._sessions.begin() as session:
            order = self._orders.lock(order_id, session)
            previous = order.status
            check_transition(previous, new_status, self.permissive)

            if previous == new_status:
                # rewritten in place, nothing else happens
                self._orders.update_status(order_id, new_status, expected=previous, session=session)
                logger.info('order %s already %s, nothing to do', order_id, previous.value)
                return TransitionResult(order_id, previous, new_status)

            self._orders.update_status(order_id, new_status, expected=previous, session=session)
            self._orders.record_status_change(order_id, previous, new_status, changed_by, session=session)

            kind = notification_for(previous, new_status)
            if kind is not None:
                recipient = self._users.email_for(order.user_id, session=session)
                if recipient:
                    notification_id = self._notifier.enqueue(session, kind, recipient, order_id=order_id)
                else:
                    logger.warning('order %s has no customer email, %s email skipped', order_id, kind.value)

        logger.info('order %s: %s -> %s by %s', order_id, previous.value, new_status.value, changed_by)

        sent = None
        if kind is not None:
            sent = self._notifier.deliver(notification_id) if notification_id is not None else False
        return TransitionResult(order_id, previous, new_status, kind, sent)

    def delete(self, order_id):
        """hard delete, an explicit admin action; cancelling never deletes"""
        self._orders.delete(order_id)

    def history(self, order_id):
        return self._orders.history(order_id)
