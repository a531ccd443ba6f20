"""
Error kinds raised by the storefront core.

Every error knows the HTTP status it maps to and the message that is safe to
show a customer. Internal causes go to the log, never into `public_message`.
"""


class StoreError(Exception):
    status_code = 500
    default_message = 'An unexpected error occurred'

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    @property
    def public_message(self):
        return self.message


# ---------- 400 ----------

class ValidationError(StoreError):
    status_code = 400
    default_message = 'Invalid request'


class InvalidCartError(ValidationError):
    default_message = 'Cart is invalid'


# ---------- 401 / 403 ----------

class AuthorizationError(StoreError):
    status_code = 401
    default_message = 'Authentication required'


class ForbiddenError(AuthorizationError):
    status_code = 403
    default_message = 'Access denied'


class NotEligibleError(ForbiddenError):
    default_message = 'You can only review products you have received'


# ---------- 404 ----------

class NotFoundError(StoreError):
    status_code = 404
    default_message = 'Not found'


class CouponNotFoundError(NotFoundError):
    default_message = 'Invalid or expired coupon code'


class OrderNotFoundError(NotFoundError):
    default_message = 'Order not found'


class UserNotFoundError(NotFoundError):
    default_message = 'User not found'


class ReviewNotFoundError(NotFoundError):
    default_message = 'Review not found'


class ProductNotFoundError(NotFoundError):
    default_message = 'Product not found'


class AddressNotFoundError(NotFoundError):
    default_message = 'Address not found'


# ---------- 409 ----------

class ConflictError(StoreError):
    status_code = 409
    default_message = 'Request conflicts with the current state'


class DuplicateReviewError(ConflictError):
    default_message = 'You have already reviewed this product'


class DuplicateCouponError(ConflictError):
    default_message = 'Coupon code already exists'


class InvalidTransitionError(ConflictError):
    default_message = 'Order status cannot be changed that way'


class StaleStatusError(ConflictError):
    default_message = 'Order status was changed by another request, reload and retry'


# ---------- 500 ----------

class DependencyError(StoreError):
    """a downstream store, email or pdf failure; never shown in detail"""

    status_code = 500

    @property
    def public_message(self):
        return self.default_message
