import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from storefront.config import REVIEW_MAX_LENGTH
from storefront.errors import (
    DuplicateReviewError,
    NotEligibleError,
    ReviewNotFoundError,
    ValidationError,
)
from storefront.models import ReviewRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Review:
    id: int
    product_name: str
    user_id: str
    rating: int
    text: str | None
    reviewer_name: str | None
    created_at: datetime

    def to_dict(self):
        return {
            'id': self.id,
            'productName': self.product_name,
            'rating': self.rating,
            'reviewText': self.text,
            'reviewerName': self.reviewer_name,
            'createdAt': self.created_at.isoformat(),
        }


def _to_review(row):
    return Review(row.id, row.product_name, row.user_uid, row.rating, row.review_text, row.reviewer_name, row.created_at)


def name_forms(name):
    """'Makhana Plain' and 'makhana-plain' are the same product"""
    base = ' '.join(name.strip().lower().split())
    return {base, base.replace(' ', '-'), base.replace('-', ' ')}


def product_key(name):
    return re.sub(r'[\s-]+', '-', name.strip().lower())


def validate_rating(rating):
    if isinstance(rating, bool):
        raise ValidationError('Rating must be between 1 and 5')
    if isinstance(rating, str) and rating.strip().isdigit():
        rating = int(rating)
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')
    return rating


class ReviewGate:

    def __init__(self, session_factory, orders, users):
        self._sessions = session_factory
        self._orders = orders
        self._users = users

    def has_received(self, user_id, product_name):
        forms = name_forms(product_name)
        for order in self._orders.list_delivered_by_user(user_id):
            for product_id in order.cart:
                if name_forms(product_id) & forms:
                    return True
        return False

    def has_reviewed(self, user_id, product_name):
        with self._sessions() as session:
            row = session.execute(
                select(ReviewRow.id).where(
                    ReviewRow.user_uid == user_id,
                    ReviewRow.product_key == product_key(product_name),
                )
            ).first()
            return row is not None

    def can_review(self, user_id, product_name):
        if not user_id or not product_name or not product_name.strip():
            return False
        # no user row (phone-only sign in) means nobody has blocked them
        user = self._users.get(user_id)
        if user is not None and (user.is_deleted or user.blocked_from_reviewing):
            return False
        if not self.has_received(user_id, product_name):
            return False
        return not self.has_reviewed(user_id, product_name)

    def submit(self, user_id, product_name, rating, text=None, reviewer_name=None):
        if not isinstance(product_name, str) or not product_name.strip():
            raise ValidationError('Product name is required')
        rating = validate_rating(rating)
        if text is not None:
            if not isinstance(text, str):
                raise ValidationError('Review text must be text')
            text = text.strip() or None
            if text and len(text) > REVIEW_MAX_LENGTH:
                raise ValidationError(f'Review cannot exceed {REVIEW_MAX_LENGTH} characters')

        if self.has_reviewed(user_id, product_name):
            raise DuplicateReviewError()
        if not self.can_review(user_id, product_name):
            raise NotEligibleError()

        # the unique constraint settles two submissions racing past the checks
        try:
            with self._sessions.begin() as session:
                row = ReviewRow(
                    product_name=product_name.strip(),
                    product_key=product_key(product_name),
                    user_uid=user_id,
                    rating=rating,
                    review_text=text,
                    reviewer_name=reviewer_name,
                    is_approved=True,
                )
                session.add(row)
                session.flush()
                review = _to_review(row)
        except IntegrityError:
            raise DuplicateReviewError()

        logger.info('review %s stored for user %s', review.id, user_id)
        return review

    def list_for_product(self, product_name):
        with self._sessions() as session:
            rows = session.execute(
                select(ReviewRow)
                .where(ReviewRow.product_key == product_key(product_name), ReviewRow.is_approved.is_(True))
                .order_by(ReviewRow.created_at.desc(), ReviewRow.id.desc())
            ).scalars()
            return [_to_review(row) for row in rows]

    def list_all(self):
        with self._sessions() as session:
            rows = session.execute(
                select(ReviewRow).order_by(ReviewRow.created_at.desc(), ReviewRow.id.desc())
            ).scalars()
            return [_to_review(row) for row in rows]

    def delete(self, review_id):
        with self._sessions.begin() as session:
            result = session.execute(delete(ReviewRow).where(ReviewRow.id == review_id))
            if result.rowcount != 1:
                raise ReviewNotFoundError()
        logger.info('review %s deleted', review_id)
