"""
Coupon lookup and administration.

Codes are case-insensitive: they are upper-cased before storage and before
every lookup. Only active coupons resolve; a deactivated code and an unknown
code look the same to the pricing path.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from storefront.cart import round_money, to_money
from storefront.db import transaction
from storefront.errors import (
    CouponNotFoundError,
    DuplicateCouponError,
    InvalidCartError,
    ValidationError,
)
from storefront.models import CouponRow

logger = logging.getLogger(__name__)


class DiscountType(str, Enum):
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


@dataclass(frozen=True)
class CouponRule:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    active: bool = True
    id: int | None = None

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'discountType': self.discount_type.value,
            'discountValue': float(self.discount_value),
            'active': self.active,
        }


def normalize_code(code):
    if not isinstance(code, str):
        return ''
    return code.strip().upper()


def _to_rule(row):
    return CouponRule(
        code=row.code,
        discount_type=DiscountType(row.discount_type),
        discount_value=round_money(Decimal(row.discount_value)),
        active=row.is_active,
        id=row.id,
    )


class CouponResolver:

    def __init__(self, session_factory):
        self._sessions = session_factory

    def resolve(self, code):
        """active rule for `code`, or None"""
        normalized = normalize_code(code)
        if not normalized:
            return None
        with self._sessions() as session:
            row = session.execute(
                select(CouponRow).where(CouponRow.code == normalized, CouponRow.is_active.is_(True))
            ).scalar_one_or_none()
            return _to_rule(row) if row else None

    def require(self, code):
        rule = self.resolve(code)
        if rule is None:
            raise CouponNotFoundError()
        return rule

    # ---------- ADMIN ----------

    def create(self, code, discount_type, discount_value):
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError('Coupon code is required')

        try:
            kind = DiscountType(str(discount_type).strip().lower())
        except ValueError:
            raise ValidationError('Discount type must be "percentage" or "fixed"')

        try:
            value = to_money(discount_value)
        except InvalidCartError:
            raise ValidationError('Discount value must be a number')
        if value < 0:
            raise ValidationError('Discount value cannot be negative')
        if kind is DiscountType.PERCENTAGE and value > 100:
            raise ValidationError('Percentage discount must be between 0 and 100')

        try:
            with self._sessions.begin() as session:
                row = CouponRow(code=normalized, discount_type=kind.value, discount_value=value, is_active=True)
                session.add(row)
                session.flush()
                coupon_id = row.id
        except IntegrityError:
            raise DuplicateCouponError()

        logger.info('coupon %s created (%s %s)', normalized, kind.value, value)
        return CouponRule(normalized, kind, value, True, coupon_id)

    def deactivate(self, code, session=None):
        normalized = normalize_code(code)
        with transaction(self._sessions, session) as s:
            row = s.execute(select(CouponRow).where(CouponRow.code == normalized)).scalar_one_or_none()
            if row is None:
                raise CouponNotFoundError('Coupon not found')
            row.is_active = False
        logger.info('coupon %s deactivated', normalized)

    def delete(self, coupon_id):
        # orders keep the code as text, so nothing else points at the row
        with self._sessions.begin() as session:
            result = session.execute(delete(CouponRow).where(CouponRow.id == coupon_id))
            if result.rowcount != 1:
                raise CouponNotFoundError('Coupon not found')
        logger.info('coupon %s deleted', coupon_id)

    def list_active(self):
        return [rule for rule in self.list_all() if rule.active]

    def list_all(self):
        with self._sessions() as session:
            rows = session.execute(select(CouponRow).order_by(CouponRow.created_at.desc(), CouponRow.id.desc())).scalars()
            return [_to_rule(row) for row in rows]
