"""
Order records.

An order is written once at checkout with status Processing. After that only
its status changes, and only through `update_status`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import delete, select, update

from storefront.cart import Cart, round_money
from storefront.config import COD_PREFIX
from storefront.db import transaction
from storefront.errors import OrderNotFoundError, StaleStatusError, ValidationError
from storefront.models import OrderRow, OrderStatusChangeRow

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PROCESSING = 'Processing'
    SHIPPED = 'Shipped'
    DELIVERED = 'Delivered'
    CANCELLED = 'Cancelled'

    @classmethod
    def parse(cls, value):
        """accepts 'Shipped', 'shipped', ' SHIPPED '"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        raise ValidationError(f'Invalid status. Must be one of: {", ".join(s.value for s in cls)}')


@dataclass(frozen=True)
class CustomerDetails:
    name: str
    phone: str
    address: str

    @classmethod
    def from_payload(cls, payload):
        if not isinstance(payload, dict):
            raise ValidationError('Address details are required')
        values = {}
        for field in ('name', 'phone', 'address'):
            value = payload.get(field)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f'Missing required field: {field}')
            values[field] = value.strip()
        if len(values['phone']) > 20:
            raise ValidationError('Phone number is too long')
        return cls(**values)


@dataclass(frozen=True)
class Order:
    id: int
    customer_name: str
    phone: str
    address: str
    cart: Cart
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    total: Decimal
    coupon_code: str | None
    payment_reference: str
    user_id: str | None
    status: OrderStatus
    created_at: datetime

    @property
    def is_cash_on_delivery(self):
        return self.payment_reference.startswith(COD_PREFIX)

    def to_dict(self):
        return {
            'id': self.id,
            'customerName': self.customer_name,
            'phone': self.phone,
            'address': self.address,
            'cartSnapshot': self.cart.to_snapshot(),
            'subtotal': float(self.subtotal),
            'discount': float(self.discount),
            'shippingCost': float(self.shipping),
            'amount': float(self.total),
            'couponCode': self.coupon_code,
            'paymentReference': self.payment_reference,
            'status': self.status.value,
            'createdAt': self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class StatusChange:
    order_id: int
    from_status: str
    to_status: str
    changed_by: str
    changed_at: datetime

    def to_dict(self):
        return {
            'orderId': self.order_id,
            'from': self.from_status,
            'to': self.to_status,
            'changedBy': self.changed_by,
            'changedAt': self.changed_at.isoformat(),
        }


def _money(value):
    return round_money(Decimal(value))


def to_order(row):
    return Order(
        id=row.id,
        customer_name=row.customer_name,
        phone=row.phone_number,
        address=row.address,
        cart=Cart.from_snapshot(row.cart_items),
        subtotal=_money(row.subtotal),
        discount=_money(row.discount_amount),
        shipping=_money(row.shipping_cost),
        total=_money(row.order_amount),
        coupon_code=row.coupon_used,
        payment_reference=row.payment_reference,
        user_id=row.user_uid,
        status=OrderStatus(row.status),
        created_at=row.created_at,
    )


class OrderRepository:

    def __init__(self, session_factory):
        self._sessions = session_factory

    def create(self, customer, cart, quote, payment_reference, user_id=None, coupon_code=None, session=None):
        """insert the full order row in one unit of work; returns the stored order"""
        with transaction(self._sessions, session) as s:
            row = OrderRow(
                customer_name=customer.name,
                phone_number=customer.phone,
                address=customer.address,
                cart_items=cart.to_snapshot(),
                subtotal=quote.subtotal,
                discount_amount=quote.discount,
                shipping_cost=quote.shipping,
                order_amount=quote.total,
                coupon_used=coupon_code,
                payment_reference=payment_reference,
                user_uid=user_id,
                status=OrderStatus.PROCESSING.value,
            )
            s.add(row)
            s.flush()
            order = to_order(row)
        logger.info('order %s created for %s, total %s', order.id, user_id or 'guest', order.total)
        return order

    def get(self, order_id, session=None):
        with transaction(self._sessions, session) as s:
            row = s.get(OrderRow, order_id)
            return to_order(row) if row else None

    def lock(self, order_id, session):
        """read an order holding a row lock until `session` ends"""
        row = session.execute(
            select(OrderRow).where(OrderRow.id == order_id).with_for_update()
        ).scalar_one_or_none()
        if row is None:
            raise OrderNotFoundError()
        return to_order(row)

    def list_by_user(self, user_id):
        with self._sessions() as session:
            rows = session.execute(
                select(OrderRow)
                .where(OrderRow.user_uid == user_id)
                .order_by(OrderRow.created_at.desc(), OrderRow.id.desc())
            ).scalars()
            return [to_order(row) for row in rows]

    def list_delivered_by_user(self, user_id):
        with self._sessions() as session:
            rows = session.execute(
                select(OrderRow).where(
                    OrderRow.user_uid == user_id,
                    OrderRow.status == OrderStatus.DELIVERED.value,
                )
            ).scalars()
            return [to_order(row) for row in rows]

    def list_all(self, status=None, limit=100, offset=0):
        with self._sessions() as session:
            query = select(OrderRow)
            if status is not None:
                query = query.where(OrderRow.status == OrderStatus.parse(status).value)
            query = query.order_by(OrderRow.created_at.desc(), OrderRow.id.desc()).limit(limit).offset(offset)
            return [to_order(row) for row in session.execute(query).scalars()]

    def update_status(self, order_id, new_status, expected=None, session=None):
        """
        set the status and return the previous one.

        with `expected` the write is a compare-and-set: if another request
        changed the status since it was read, StaleStatusError is raised and
        nothing is written.
        """
        new_status = OrderStatus.parse(new_status)
        with transaction(self._sessions, session) as s:
            if expected is None:
                expected = self.lock(order_id, s).status
            result = s.execute(
                update(OrderRow)
                .where(OrderRow.id == order_id, OrderRow.status == OrderStatus.parse(expected).value)
                .values(status=new_status.value)
            )
            if result.rowcount != 1:
                if s.get(OrderRow, order_id) is None:
                    raise OrderNotFoundError()
                raise StaleStatusError()
        return OrderStatus.parse(expected)

    def record_status_change(self, order_id, from_status, to_status, changed_by='admin', session=None):
        with transaction(self._sessions, session) as s:
            s.add(OrderStatusChangeRow(
                order_id=order_id,
                from_status=OrderStatus.parse(from_status).value,
                to_status=OrderStatus.parse(to_status).value,
                changed_by=changed_by,
            ))

    def history(self, order_id):
        with self._sessions() as session:
            rows = session.execute(
                select(OrderStatusChangeRow)
                .where(OrderStatusChangeRow.order_id == order_id)
                .order_by(OrderStatusChangeRow.changed_at, OrderStatusChangeRow.id)
            ).scalars()
            return [
                StatusChange(r.order_id, r.from_status, r.to_status, r.changed_by, r.changed_at)
                for r in rows
            ]

    def delete(self, order_id, session=None):
        with transaction(self._sessions, session) as s:
            result = s.execute(delete(OrderRow).where(OrderRow.id == order_id))
            if result.rowcount != 1:
                raise OrderNotFoundError()
        logger.info('order %s deleted', order_id)
