"""
HTTP layer.

`create_app` builds every collaborator once (database, email sender, identity
verifier, payment verifier), wires the components together and registers
them under `app.extensions['storefront']`. Routes only translate between JSON
and the components.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import click
from flask import Flask, Response, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from storefront import __version__
from storefront.addresses import AddressBook
from storefront.auth import IdentityVerifier, admin_required, login_required
from storefront.cart import Cart
from storefront.catalog import Catalog
from storefront.checkout import CheckoutService, PaymentVerifier
from storefront.config import Config
from storefront.coupons import CouponResolver
from storefront.db import create_database
from storefront.errors import DependencyError, OrderNotFoundError, StoreError, ValidationError
from storefront.invoices import StoreInfo, invoice_number, render_invoice
from storefront.lifecycle import OrderLifecycle
from storefront.notifications import (
    LoggingEmailSender,
    NotificationDispatcher,
    NotificationKind,
    ResendEmailSender,
)
from storefront.orders import CustomerDetails, OrderRepository
from storefront.reviews import ReviewGate
from storefront.settings import SiteSettings
from storefront.users import UserRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_factory: object
    engine: object
    store: StoreInfo
    identity: IdentityVerifier
    catalog: Catalog
    coupons: CouponResolver
    orders: OrderRepository
    users: UserRepository
    notifier: NotificationDispatcher
    checkout: CheckoutService
    lifecycle: OrderLifecycle
    reviews: ReviewGate
    addresses: AddressBook
    settings: SiteSettings


def build_services(config, email_sender=None, identity=None, payments=None):
    session_factory, engine = create_database(config['DATABASE_URL'], echo=config.get('SQL_ECHO', False))

    store = StoreInfo(config['STORE_NAME'], config['STORE_ADDRESS'], config['CONTACT_EMAIL'])
    if email_sender is None:
        if config.get('RESEND_API_KEY'):
            email_sender = ResendEmailSender(config['RESEND_API_KEY'], config['MAIL_FROM'])
        else:
            logger.warning('RESEND_API_KEY not set, emails will only be logged')
            email_sender = LoggingEmailSender()
    if identity is None:
        algorithms = [a.strip() for a in config.get('IDENTITY_ALGORITHMS', 'HS256').split(',') if a.strip()]
        identity = IdentityVerifier(
            config.get('IDENTITY_SECRET', ''),
            algorithms=algorithms,
            audience=config.get('IDENTITY_AUDIENCE'),
            issuer=config.get('IDENTITY_ISSUER'),
        )

    users = UserRepository(session_factory, timedelta(minutes=config['DELETION_CODE_TTL_MINUTES']))
    orders = OrderRepository(session_factory)
    coupons = CouponResolver(session_factory)
    notifier = NotificationDispatcher(
        session_factory, email_sender, orders, store,
        max_attempts=config['NOTIFICATION_MAX_ATTEMPTS'],
        claim_timeout=timedelta(minutes=config['NOTIFICATION_CLAIM_TIMEOUT_MINUTES']),
    )
    return Services(
        session_factory=session_factory,
        engine=engine,
        store=store,
        identity=identity,
        catalog=Catalog(session_factory),
        coupons=coupons,
        orders=orders,
        users=users,
        notifier=notifier,
        checkout=CheckoutService(session_factory, coupons, orders, users, notifier, payments or PaymentVerifier()),
        lifecycle=OrderLifecycle(
            session_factory, orders, users, notifier, permissive=config.get('PERMISSIVE_STATUS_CHANGES', False),
        ),
        reviews=ReviewGate(session_factory, orders, users),
        addresses=AddressBook(session_factory),
        settings=SiteSettings(session_factory),
    )


def create_app(config=None, email_sender=None, identity=None, payments=None):
    """create and configure the flask application"""
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    app.extensions['storefront'] = build_services(app.config, email_sender, identity, payments)

    register_error_handlers(app)
    register_public_routes(app)
    register_admin_routes(app)
    register_commands(app)
    return app


def services():
    return current_app.extensions['storefront']


def get_json():
    # admin forms post urlencoded, the storefront posts json
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict() if request.form else {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def parse_id(value, what='id'):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {what}')


def product_args(data):
    # the admin form sends strings and a checkbox, the api sends typed json
    stock = data.get('stockQuantity', data.get('stock_quantity', 10))
    if isinstance(stock, str):
        stock = parse_id(stock.strip() or '0', 'stock quantity')
    featured = data.get('isFeatured', data.get('is_featured', False))
    if isinstance(featured, str):
        featured = featured.strip().lower() in ('1', 'true', 'on', 'yes')
    return {
        'name': data.get('name'),
        'price': data.get('price'),
        'description': data.get('description'),
        'image_url': data.get('imageUrl', data.get('image_url')),
        'sale_price': data.get('salePrice', data.get('sale_price')),
        'stock_quantity': stock,
        'is_featured': featured,
        'category': data.get('category'),
    }


# ============== ERROR HANDLERS ==============

def register_error_handlers(app):

    @app.errorhandler(StoreError)
    def handle_store_error(e):
        if isinstance(e, DependencyError):
            logger.error('dependency failure on %s: %s', request.path, e.message, exc_info=e.__cause__)
        elif e.status_code >= 500:
            logger.error('error on %s: %s', request.path, e.message)
        return jsonify({'error': e.public_message}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({'error': e.description}), e.code
        logger.exception('unhandled error on %s', request.path)
        return jsonify({'error': 'An unexpected error occurred'}), 500


# ============== PUBLIC ROUTES ==============

def register_public_routes(app):

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'ok',
            'version': __version__,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    # ---------- CATALOG ----------

    @app.route('/api/products', methods=['GET'])
    def list_products():
        return jsonify(services().catalog.list_products(category=request.args.get('category')))

    @app.route('/api/featured-products', methods=['GET'])
    def featured_products():
        return jsonify(services().catalog.list_featured())

    @app.route('/api/active-coupons', methods=['GET'])
    def active_coupons():
        return jsonify([c.to_dict() for c in services().coupons.list_active()])

    @app.route('/api/site-settings', methods=['GET'])
    def site_settings():
        return jsonify(services().settings.all())

    # ---------- PRICING & CHECKOUT ----------

    @app.route('/api/apply-coupon', methods=['POST'])
    def apply_coupon():
        data = get_json()
        cart = Cart.from_payload(data.get('cart'))
        quote, coupon = services().checkout.quote(cart, data.get('couponCode'))
        return jsonify({**quote.to_dict(), 'appliedCoupon': coupon.code if coupon else None})

    @app.route('/checkout', methods=['POST'])
    @login_required
    def checkout():
        data = get_json()
        for field in ('cart', 'addressDetails', 'paymentId'):
            if not data.get(field):
                raise ValidationError(f'Missing required field: {field}')

        cart = Cart.from_payload(data['cart'])
        customer = CustomerDetails.from_payload(data['addressDetails'])
        # later status emails look the address up on the user record
        if g.identity.email and services().users.get(g.identity.uid) is None:
            services().users.record_login(g.identity.uid, g.identity.email, g.identity.phone)
        result = services().checkout.place_order(
            g.identity.uid,
            cart,
            customer,
            data['paymentId'],
            coupon_code=data.get('couponCode'),
            email=g.identity.email,
        )
        return jsonify(result.to_dict())

    # ---------- ACCOUNT ----------

    @app.route('/api/user-login', methods=['POST'])
    @login_required
    def user_login():
        data = get_json()
        email = g.identity.email or data.get('email')
        user = services().users.record_login(g.identity.uid, email, data.get('phone') or g.identity.phone)
        return jsonify({'success': True, 'user': user.to_dict()})

    @app.route('/api/check-phone', methods=['POST'])
    def check_phone():
        return jsonify({'exists': services().users.phone_registered(get_json().get('phone'))})

    @app.route('/api/my-addresses', methods=['GET'])
    @login_required
    def my_addresses():
        return jsonify([a.to_dict() for a in services().addresses.list_for(g.identity.uid)])

    @app.route('/api/my-addresses', methods=['POST'])
    @login_required
    def add_address():
        address = services().addresses.add(g.identity.uid, get_json())
        return jsonify(address.to_dict()), 201

    @app.route('/api/my-addresses/<address_id>', methods=['DELETE'])
    @login_required
    def delete_address(address_id):
        services().addresses.delete(g.identity.uid, parse_id(address_id, 'address id'))
        return jsonify({'success': True})

    @app.route('/api/my-orders', methods=['GET'])
    @login_required
    def my_orders():
        orders = services().orders.list_by_user(g.identity.uid)
        return jsonify([
            {
                'id': o.id,
                'amount': float(o.total),
                'createdAt': o.created_at.isoformat(),
                'cartSnapshot': o.cart.to_snapshot(),
                'status': o.status.value,
                'invoiceNumber': invoice_number(o),
            }
            for o in orders
        ])

    @app.route('/api/my-orders/<order_id>/invoice', methods=['GET'])
    @login_required
    def my_invoice(order_id):
        order = services().orders.get(parse_id(order_id, 'order id'))
        # someone else's order looks like a missing one
        if order is None or order.user_id != g.identity.uid:
            raise OrderNotFoundError()
        pdf = render_invoice(order, services().store)
        return Response(
            pdf,
            mimetype='application/pdf',
            headers={'Content-Disposition': f'attachment; filename=invoice-{order.id}.pdf'},
        )

    @app.route('/api/request-deletion-code', methods=['POST'])
    @login_required
    def request_deletion_code():
        code, email = services().users.issue_deletion_code(g.identity.uid)
        sent = services().notifier.send(NotificationKind.DELETION_CODE, None, email, {'code': code})
        if not sent:
            raise DependencyError('deletion code email failed')
        return jsonify({'success': True, 'message': 'A deletion code has been sent to your email'})

    @app.route('/api/verify-deletion', methods=['POST'])
    @login_required
    def verify_deletion():
        code = get_json().get('code')
        if not code:
            raise ValidationError('Missing required field: code')
        services().users.verify_deletion(g.identity.uid, code)
        return jsonify({'success': True, 'message': 'Your account has been deleted'})

    # ---------- REVIEWS ----------

    @app.route('/api/products/<product_name>/reviews', methods=['GET'])
    def product_reviews(product_name):
        return jsonify([r.to_dict() for r in services().reviews.list_for_product(product_name)])

    @app.route('/api/can-review/<product_name>', methods=['GET'])
    @login_required
    def can_review(product_name):
        return jsonify({'canReview': services().reviews.can_review(g.identity.uid, product_name)})

    @app.route('/api/submit-review', methods=['POST'])
    @login_required
    def submit_review():
        data = get_json()
        reviewer = data.get('reviewerName') or (g.identity.email or '').split('@')[0] or None
        review = services().reviews.submit(
            g.identity.uid,
            data.get('productName'),
            data.get('rating'),
            data.get('reviewText'),
            reviewer_name=reviewer,
        )
        return jsonify({'success': True, 'review': review.to_dict()}), 201


# ============== ADMIN ROUTES ==============

def register_admin_routes(app):

    # ---------- ORDERS ----------

    @app.route('/admin/orders', methods=['GET'])
    @admin_required
    def admin_list_orders():
        limit = min(request.args.get('limit', 100, type=int), 500)
        offset = request.args.get('offset', 0, type=int)
        orders = services().orders.list_all(status=request.args.get('status'), limit=limit, offset=offset)
        return jsonify({'orders': [o.to_dict() for o in orders], 'limit': limit, 'offset': offset})

    @app.route('/admin/update-order-status/<order_id>', methods=['POST'])
    @admin_required
    def admin_update_order_status(order_id):
        new_status = get_json().get('newStatus')
        if not new_status:
            raise ValidationError('Missing required field: newStatus')
        result = services().lifecycle.transition(parse_id(order_id, 'order id'), new_status)
        return jsonify({'success': True, **result.to_dict()})

    @app.route('/admin/delete-order/<order_id>', methods=['POST'])
    @admin_required
    def admin_delete_order(order_id):
        services().lifecycle.delete(parse_id(order_id, 'order id'))
        return jsonify({'success': True})

    @app.route('/admin/orders/<order_id>/history', methods=['GET'])
    @admin_required
    def admin_order_history(order_id):
        oid = parse_id(order_id, 'order id')
        return jsonify({
            'statusChanges': [c.to_dict() for c in services().lifecycle.history(oid)],
            'notifications': services().notifier.list_for_order(oid),
        })

    @app.route('/admin/process-notifications', methods=['POST'])
    @admin_required
    def admin_process_notifications():
        return jsonify({'sent': services().notifier.process_pending()})

    # ---------- COUPONS ----------

    @app.route('/admin/coupons', methods=['GET'])
    @admin_required
    def admin_list_coupons():
        return jsonify([c.to_dict() for c in services().coupons.list_all()])

    @app.route('/admin/add-coupon', methods=['POST'])
    @admin_required
    def admin_add_coupon():
        data = get_json()
        coupon = services().coupons.create(
            data.get('code'),
            data.get('discountType', data.get('discount_type')),
            data.get('discountValue', data.get('discount_value')),
        )
        return jsonify(coupon.to_dict()), 201

    @app.route('/admin/deactivate-coupon/<code>', methods=['POST'])
    @admin_required
    def admin_deactivate_coupon(code):
        services().coupons.deactivate(code)
        return jsonify({'success': True})

    @app.route('/admin/delete-coupon/<coupon_id>', methods=['POST'])
    @admin_required
    def admin_delete_coupon(coupon_id):
        services().coupons.delete(parse_id(coupon_id, 'coupon id'))
        return jsonify({'success': True})

    # ---------- PRODUCTS ----------

    @app.route('/admin/products', methods=['GET'])
    @admin_required
    def admin_list_products():
        return jsonify(services().catalog.list_products())

    @app.route('/admin/add-product', methods=['POST'])
    @admin_required
    def admin_add_product():
        return jsonify(services().catalog.add_product(**product_args(get_json()))), 201

    @app.route('/admin/edit-product/<product_id>', methods=['GET'])
    @admin_required
    def admin_edit_product(product_id):
        return jsonify(services().catalog.get(parse_id(product_id, 'product id')))

    @app.route('/admin/update-product/<product_id>', methods=['POST'])
    @admin_required
    def admin_update_product(product_id):
        product = services().catalog.update_product(parse_id(product_id, 'product id'), **product_args(get_json()))
        return jsonify(product)

    @app.route('/admin/delete-product/<product_id>', methods=['POST'])
    @admin_required
    def admin_delete_product(product_id):
        services().catalog.delete_product(parse_id(product_id, 'product id'))
        return jsonify({'success': True})

    @app.route('/admin/toggle-featured/<product_id>', methods=['POST'])
    @admin_required
    def admin_toggle_featured(product_id):
        featured = services().catalog.toggle_featured(parse_id(product_id, 'product id'))
        return jsonify({'success': True, 'isFeatured': featured})

    # ---------- SITE SETTINGS ----------

    @app.route('/admin/settings', methods=['GET'])
    @admin_required
    def admin_settings():
        return jsonify(services().settings.all())

    @app.route('/admin/settings', methods=['POST'])
    @admin_required
    def admin_update_settings():
        return jsonify(services().settings.update(get_json()))

    # ---------- USERS & REVIEWS ----------

    @app.route('/admin/users', methods=['GET'])
    @admin_required
    def admin_list_users():
        return jsonify([u.to_dict() for u in services().users.list_all()])

    @app.route('/admin/reviews', methods=['GET'])
    @admin_required
    def admin_list_reviews():
        return jsonify([{**r.to_dict(), 'userId': r.user_id} for r in services().reviews.list_all()])

    @app.route('/admin/block-user/<uid>', methods=['POST'])
    @admin_required
    def admin_block_user(uid):
        services().users.set_review_block(uid, True)
        return jsonify({'success': True})

    @app.route('/admin/unblock-user/<uid>', methods=['POST'])
    @admin_required
    def admin_unblock_user(uid):
        services().users.set_review_block(uid, False)
        return jsonify({'success': True})

    @app.route('/admin/soft-delete-user/<uid>', methods=['POST'])
    @admin_required
    def admin_soft_delete_user(uid):
        services().users.soft_delete(uid)
        return jsonify({'success': True})

    @app.route('/admin/permanent-delete-user/<uid>', methods=['POST'])
    @admin_required
    def admin_permanent_delete_user(uid):
        services().users.permanent_delete(uid)
        return jsonify({'success': True})

    @app.route('/admin/delete-review/<review_id>', methods=['POST'])
    @admin_required
    def admin_delete_review(review_id):
        services().reviews.delete(parse_id(review_id, 'review id'))
        return jsonify({'success': True})


# ============== CLI ==============

def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """create missing tables"""
        # create_database already ran when the app was built
        click.echo('database ready')

    @app.cli.command('seed')
    def seed():
        """sample products and coupons for local development"""
        svc = app.extensions['storefront']
        if svc.catalog.list_products():
            click.echo('products already exist, nothing to do')
            return
        svc.catalog.add_product('Makhana Plain', 200, 'Roasted fox nuts, lightly salted.', is_featured=True, category='classic')
        svc.catalog.add_product('Makhana Peri Peri', 240, 'Fox nuts tossed in peri peri spice.', category='flavoured')
        svc.catalog.add_product('Makhana Subscription', 999, 'A monthly box of assorted makhana.', category='subscription')
        svc.coupons.create('SAVE10', 'percentage', 10)
        svc.coupons.create('FLAT50', 'fixed', 50)
        click.echo('seeded 3 products and 2 coupons')

    @app.cli.command('process-notifications')
    @click.option('--limit', default=50, show_default=True)
    def process_notifications(limit):
        """retry pending or failed emails"""
        sent = app.extensions['storefront'].notifier.process_pending(limit=limit)
        click.echo(f'{sent} notifications sent')
