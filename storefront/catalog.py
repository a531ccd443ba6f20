import logging
from decimal import Decimal

from sqlalchemy import select

from storefront.cart import round_money, to_money
from storefront.errors import InvalidCartError, ProductNotFoundError, ValidationError
from storefront.models import ProductRow

logger = logging.getLogger(__name__)


def _product_dict(row):
    return {
        'id': row.id,
        'name': row.name,
        'price': float(round_money(Decimal(row.price))),
        'salePrice': float(round_money(Decimal(row.sale_price))) if row.sale_price is not None else None,
        'description': row.description,
        'imageUrl': row.image_url,
        'stockQuantity': row.stock_quantity,
        'isFeatured': row.is_featured,
        'category': row.category,
    }


def _price(value, label):
    try:
        amount = to_money(value)
    except InvalidCartError:
        raise ValidationError(f'{label} must be a number')
    if amount < 0:
        raise ValidationError(f'{label} cannot be negative')
    return amount


def _product_fields(name, price, description, image_url, sale_price, stock_quantity, is_featured, category):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Product name is required')
    if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0:
        raise ValidationError('Stock quantity must be a whole number of at least 0')
    return {
        'name': name.strip(),
        'price': _price(price, 'Price'),
        'sale_price': _price(sale_price, 'Sale price') if sale_price not in (None, '') else None,
        'description': description or None,
        'image_url': image_url or None,
        'stock_quantity': stock_quantity,
        'is_featured': bool(is_featured),
        'category': category or None,
    }


class Catalog:
    """product listings for the storefront plus the admin's product upkeep"""

    def __init__(self, session_factory):
        self._sessions = session_factory

    def list_products(self, category=None):
        with self._sessions() as session:
            query = select(ProductRow)
            if category:
                query = query.where(ProductRow.category == category)
            query = query.order_by(ProductRow.created_at.desc(), ProductRow.id.desc())
            return [_product_dict(row) for row in session.execute(query).scalars()]

    def list_featured(self):
        with self._sessions() as session:
            rows = session.execute(
                select(ProductRow)
                .where(ProductRow.is_featured.is_(True))
                .order_by(ProductRow.created_at.desc(), ProductRow.id.desc())
            ).scalars()
            return [_product_dict(row) for row in rows]

    def get(self, product_id):
        with self._sessions() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise ProductNotFoundError()
            return _product_dict(row)

    # ---------- ADMIN ----------

    def add_product(self, name, price, description=None, image_url=None, sale_price=None,
                    stock_quantity=10, is_featured=False, category=None):
        fields = _product_fields(name, price, description, image_url, sale_price, stock_quantity, is_featured, category)
        with self._sessions.begin() as session:
            row = ProductRow(**fields)
            session.add(row)
            session.flush()
            product = _product_dict(row)
        logger.info('product %s added (%s)', product['id'], product['name'])
        return product

    def update_product(self, product_id, name, price, description=None, image_url=None, sale_price=None,
                       stock_quantity=10, is_featured=False, category=None):
        """replace every editable field, like the admin edit form does"""
        fields = _product_fields(name, price, description, image_url, sale_price, stock_quantity, is_featured, category)
        with self._sessions.begin() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise ProductNotFoundError()
            for key, value in fields.items():
                setattr(row, key, value)
            product = _product_dict(row)
        logger.info('product %s updated', product_id)
        return product

    def delete_product(self, product_id):
        # past orders carry their own copy of each line, nothing else to fix up
        with self._sessions.begin() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise ProductNotFoundError()
            session.delete(row)
        logger.info('product %s deleted', product_id)

    def toggle_featured(self, product_id):
        with self._sessions.begin() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise ProductNotFoundError()
            row.is_featured = not row.is_featured
            featured = row.is_featured
        logger.info('product %s featured=%s', product_id, featured)
        return featured
