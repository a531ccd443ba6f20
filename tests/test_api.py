import re

import pytest

CART = {'makhana-plain': {'unitPrice': 200, 'quantity': 2}}
ADDRESS = {'name': 'Asha Kumari', 'phone': '9876543210', 'address': 'Main Road, Bhagalpur'}


def checkout(client, headers, cart=CART, coupon=None, payment='pay_ABC123'):
    body = {'cart': cart, 'addressDetails': ADDRESS, 'paymentId': payment}
    if coupon:
        body['couponCode'] = coupon
    return client.post('/checkout', json=body, headers=headers)


def deliver(client, admin, order_id):
    for status in ('Shipped', 'Delivered'):
        resp = client.post(f'/admin/update-order-status/{order_id}', json={'newStatus': status}, headers=admin)
        assert resp.status_code == 200


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'ok'


def test_unknown_endpoint(client):
    resp = client.get('/nope')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Endpoint not found'}


# ============== PRICING & CHECKOUT ==============

def test_apply_coupon_quotes(client, services):
    services.coupons.create('SAVE10', 'percentage', 10)

    resp = client.post('/api/apply-coupon', json={'cart': CART, 'couponCode': 'save10'})

    assert resp.status_code == 200
    assert resp.get_json() == {
        'subtotal': 400.0,
        'shippingCost': 99.0,
        'discount': 40.0,
        'total': 459.0,
        'appliedCoupon': 'SAVE10',
    }


def test_apply_coupon_without_code(client):
    resp = client.post('/api/apply-coupon', json={'cart': CART})
    assert resp.get_json()['total'] == 499.0
    assert resp.get_json()['appliedCoupon'] is None


def test_apply_unknown_coupon_is_404(client):
    resp = client.post('/api/apply-coupon', json={'cart': CART, 'couponCode': 'BOGUS'})
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Invalid or expired coupon code'}


def test_apply_coupon_empty_cart(client):
    resp = client.post('/api/apply-coupon', json={'cart': {}})
    assert resp.status_code == 400


@pytest.mark.parametrize('line', [
    {'unitPrice': 1e30, 'quantity': 1},
    {'unitPrice': 200, 'quantity': 10**27},
])
def test_apply_coupon_huge_amounts_are_400(client, line):
    resp = client.post('/api/apply-coupon', json={'cart': {'makhana-plain': line}})

    assert resp.status_code == 400
    assert 'error' in resp.get_json()


def test_checkout_huge_amount_stores_nothing(client, auth, admin):
    resp = checkout(client, auth(), cart={'makhana-plain': {'unitPrice': 1e30, 'quantity': 1}})

    assert resp.status_code == 400
    assert client.get('/admin/orders', headers=admin).get_json()['orders'] == []


@pytest.mark.parametrize('cart, coupon', [
    (CART, None),
    (CART, 'SAVE10'),
    ({'makhana-plain': {'unitPrice': 300, 'quantity': 2}}, 'FLAT1000'),
    ({'monthly-subscription': {'unitPrice': 299, 'quantity': 1}}, None),
])
def test_preview_matches_commit(client, services, auth, admin, cart, coupon):
    services.coupons.create('SAVE10', 'percentage', 10)
    services.coupons.create('FLAT1000', 'fixed', 1000)

    preview = client.post('/api/apply-coupon', json={'cart': cart, 'couponCode': coupon}).get_json()
    placed = checkout(client, auth(), cart=cart, coupon=coupon)
    assert placed.status_code == 200

    (order,) = client.get('/admin/orders', headers=admin).get_json()['orders']
    assert order['id'] == placed.get_json()['orderId']
    assert {k: order[k] for k in ('subtotal', 'discount', 'shippingCost')} == {
        k: preview[k] for k in ('subtotal', 'discount', 'shippingCost')
    }
    assert order['amount'] == preview['total'] == placed.get_json()['total']


def test_checkout_success(client, auth, mailer):
    resp = checkout(client, auth())

    body = resp.get_json()
    assert resp.status_code == 200
    assert body['success'] is True
    assert body['confirmationSent'] is True
    assert mailer.sent[0].attachments


def test_checkout_survives_email_outage(client, auth, mailer):
    mailer.fail = True

    resp = checkout(client, auth())

    assert resp.status_code == 200
    assert resp.get_json()['confirmationSent'] is False


def test_checkout_requires_identity(client):
    assert checkout(client, {}).status_code == 401
    assert checkout(client, {'Authorization': 'Bearer not-a-jwt'}).status_code == 401


def test_checkout_rejects_expired_token(client, auth):
    resp = checkout(client, auth(expires_in=-60))
    assert resp.status_code == 401
    assert 'expired' in resp.get_json()['error']


def test_checkout_rejects_foreign_token(client, auth):
    resp = checkout(client, auth(secret='someone-elses-key'))
    assert resp.status_code == 401


@pytest.mark.parametrize('missing', ['cart', 'addressDetails', 'paymentId'])
def test_checkout_missing_fields(client, auth, missing):
    body = {'cart': CART, 'addressDetails': ADDRESS, 'paymentId': 'pay_1'}
    del body[missing]

    resp = client.post('/checkout', json=body, headers=auth())

    assert resp.status_code == 400
    assert resp.get_json() == {'error': f'Missing required field: {missing}'}


def test_checkout_unknown_coupon(client, auth, admin):
    assert checkout(client, auth(), coupon='BOGUS').status_code == 404
    assert client.get('/admin/orders', headers=admin).get_json()['orders'] == []


def test_checkout_internal_failure_is_generic(client, auth, services, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError('database on fire')
    monkeypatch.setattr(services.orders, 'create', broken)

    resp = checkout(client, auth())

    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'An unexpected error occurred'}


# ============== ACCOUNT ==============

def test_my_orders_newest_first(client, auth):
    first = checkout(client, auth()).get_json()['orderId']
    second = checkout(client, auth()).get_json()['orderId']
    checkout(client, auth('user-2', 'ravi@example.com'))

    orders = client.get('/api/my-orders', headers=auth()).get_json()

    assert [o['id'] for o in orders] == [second, first]
    assert set(orders[0]) >= {'id', 'amount', 'createdAt', 'cartSnapshot', 'status'}
    assert orders[0]['cartSnapshot'] == {'makhana-plain': {'unitPrice': '200.00', 'quantity': 2}}
    assert orders[0]['status'] == 'Processing'


def test_invoice_download_is_owner_only(client, auth):
    order_id = checkout(client, auth()).get_json()['orderId']

    mine = client.get(f'/api/my-orders/{order_id}/invoice', headers=auth())
    assert mine.status_code == 200
    assert mine.mimetype == 'application/pdf'
    assert mine.data.startswith(b'%PDF')

    theirs = client.get(f'/api/my-orders/{order_id}/invoice', headers=auth('user-2', 'ravi@example.com'))
    assert theirs.status_code == 404


def test_user_login(client, auth):
    resp = client.post('/api/user-login', json={'phone': '9876543210'}, headers=auth())
    assert resp.get_json()['user']['uid'] == 'user-1'
    assert resp.get_json()['user']['phone'] == '9876543210'


def test_account_deletion(client, auth, mailer):
    client.post('/api/user-login', json={}, headers=auth())

    resp = client.post('/api/request-deletion-code', headers=auth())
    assert resp.status_code == 200
    code = re.search(r'<strong>(\d{6})</strong>', mailer.sent[-1].html).group(1)

    assert client.post('/api/verify-deletion', json={'code': 'xxxxxx'}, headers=auth()).status_code == 400
    assert client.post('/api/verify-deletion', json={'code': code}, headers=auth()).status_code == 200

    # deleted accounts are shut out everywhere
    assert client.get('/api/my-orders', headers=auth()).status_code == 403
    assert checkout(client, auth()).status_code == 403


# ============== REVIEWS ==============

def test_review_flow(client, auth, admin):
    order_id = checkout(client, auth()).get_json()['orderId']
    review = {'productName': 'Makhana Plain', 'rating': 5, 'reviewText': 'So crunchy'}

    assert client.get('/api/can-review/makhana-plain', headers=auth()).get_json() == {'canReview': False}
    assert client.post('/api/submit-review', json=review, headers=auth()).status_code == 403

    deliver(client, admin, order_id)

    assert client.get('/api/can-review/makhana-plain', headers=auth()).get_json() == {'canReview': True}
    resp = client.post('/api/submit-review', json=review, headers=auth())
    assert resp.status_code == 201
    assert resp.get_json()['review']['reviewerName'] == 'asha'

    assert client.post('/api/submit-review', json=review, headers=auth()).status_code == 409

    listed = client.get('/api/products/makhana-plain/reviews').get_json()
    assert [r['reviewText'] for r in listed] == ['So crunchy']


def test_phone_only_customer_can_review(client, auth, admin, services):
    headers = auth('phone-user', None)
    order_id = checkout(client, headers).get_json()['orderId']
    deliver(client, admin, order_id)
    assert services.users.get('phone-user') is None

    assert client.get('/api/can-review/makhana-plain', headers=headers).get_json() == {'canReview': True}
    resp = client.post('/api/submit-review', json={'productName': 'makhana-plain', 'rating': 4}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['review']['reviewerName'] is None


def test_review_rating_validation(client, auth, admin):
    deliver(client, admin, checkout(client, auth()).get_json()['orderId'])

    resp = client.post('/api/submit-review', json={'productName': 'makhana-plain', 'rating': 9}, headers=auth())
    assert resp.status_code == 400


# ============== ADMIN ==============

def test_admin_requires_key(client):
    assert client.get('/admin/orders').status_code == 403
    assert client.get('/admin/orders', headers={'X-Admin-Key': 'guess'}).status_code == 403


def test_admin_status_update_is_idempotent(client, auth, admin, mailer):
    order_id = checkout(client, auth()).get_json()['orderId']
    url = f'/admin/update-order-status/{order_id}'

    first = client.post(url, data={'newStatus': 'Shipped'}, headers=admin)
    sent = len(mailer.sent)
    second = client.post(url, data={'newStatus': 'Shipped'}, headers=admin)

    assert first.get_json()['notification'] == 'shipped'
    assert second.get_json()['changed'] is False
    assert len(mailer.sent) == sent == 2

    history = client.get(f'/admin/orders/{order_id}/history', headers=admin).get_json()
    assert [(c['from'], c['to']) for c in history['statusChanges']] == [('Processing', 'Shipped')]
    assert [n['kind'] for n in history['notifications']] == ['confirmation', 'shipped']


def test_admin_invalid_transition(client, auth, admin):
    order_id = checkout(client, auth()).get_json()['orderId']
    url = f'/admin/update-order-status/{order_id}'

    assert client.post(url, json={'newStatus': 'Delivered'}, headers=admin).status_code == 409
    assert client.post(url, json={'newStatus': 'Lost'}, headers=admin).status_code == 400
    assert client.post(url, json={}, headers=admin).status_code == 400
    assert client.post('/admin/update-order-status/999', json={'newStatus': 'Shipped'}, headers=admin).status_code == 404


def test_admin_cancel_then_delete(client, auth, admin):
    order_id = checkout(client, auth()).get_json()['orderId']

    client.post(f'/admin/update-order-status/{order_id}', json={'newStatus': 'Cancelled'}, headers=admin)
    orders = client.get('/admin/orders?status=Cancelled', headers=admin).get_json()['orders']
    assert [o['id'] for o in orders] == [order_id]

    assert client.post(f'/admin/delete-order/{order_id}', headers=admin).status_code == 200
    assert client.get('/admin/orders', headers=admin).get_json()['orders'] == []
    assert client.post(f'/admin/delete-order/{order_id}', headers=admin).status_code == 404


def test_admin_coupons(client, admin):
    resp = client.post('/admin/add-coupon', json={'code': 'monsoon', 'discountType': 'fixed', 'discountValue': 75}, headers=admin)
    assert resp.status_code == 201
    assert resp.get_json()['code'] == 'MONSOON'

    assert client.post('/admin/add-coupon', json={'code': 'MONSOON', 'discountType': 'fixed', 'discountValue': 1}, headers=admin).status_code == 409
    assert client.post('/admin/add-coupon', json={'code': 'BIG', 'discountType': 'percentage', 'discountValue': 150}, headers=admin).status_code == 400

    assert [c['code'] for c in client.get('/api/active-coupons').get_json()] == ['MONSOON']
    client.post('/admin/deactivate-coupon/monsoon', headers=admin)
    assert client.get('/api/active-coupons').get_json() == []
    assert client.get('/admin/coupons', headers=admin).get_json()[0]['active'] is False


def test_admin_user_moderation(client, auth, admin):
    order_id = checkout(client, auth()).get_json()['orderId']
    deliver(client, admin, order_id)

    assert client.post('/admin/block-user/user-1', headers=admin).status_code == 200
    assert client.get('/api/can-review/makhana-plain', headers=auth()).get_json() == {'canReview': False}
    client.post('/admin/unblock-user/user-1', headers=admin)

    review = client.post(
        '/api/submit-review', json={'productName': 'makhana-plain', 'rating': 2}, headers=auth(),
    ).get_json()['review']
    assert client.post(f"/admin/delete-review/{review['id']}", headers=admin).status_code == 200

    assert client.post('/admin/soft-delete-user/user-1', headers=admin).status_code == 200
    assert client.get('/api/my-orders', headers=auth()).status_code == 403
    assert client.post('/admin/block-user/ghost', headers=admin).status_code == 404


def test_admin_process_notifications(client, auth, admin, mailer):
    mailer.fail = True
    checkout(client, auth())
    mailer.fail = False

    resp = client.post('/admin/process-notifications', headers=admin)

    assert resp.get_json() == {'sent': 1}


# ============== CATALOG ==============

def test_product_listings(client, services):
    services.catalog.add_product('Makhana Plain', 200, is_featured=True, category='classic')
    services.catalog.add_product('Makhana Peri Peri', 240, sale_price=219, category='flavoured')

    products = client.get('/api/products').get_json()
    assert {p['name'] for p in products} == {'Makhana Plain', 'Makhana Peri Peri'}

    flavoured = client.get('/api/products?category=flavoured').get_json()
    assert [(p['name'], p['salePrice']) for p in flavoured] == [('Makhana Peri Peri', 219.0)]

    featured = client.get('/api/featured-products').get_json()
    assert [p['name'] for p in featured] == ['Makhana Plain']


# ============== ADMIN UPKEEP ==============

def test_admin_product_upkeep(client, admin):
    resp = client.post('/admin/add-product', data={
        'name': 'Makhana Pudina', 'price': '220', 'salePrice': '', 'stockQuantity': '25', 'isFeatured': 'on',
        'category': 'flavoured',
    }, headers=admin)
    assert resp.status_code == 201
    product = resp.get_json()
    assert (product['price'], product['salePrice'], product['stockQuantity'], product['isFeatured']) == (220.0, None, 25, True)

    url = f"/admin/edit-product/{product['id']}"
    assert client.get(url, headers=admin).get_json()['name'] == 'Makhana Pudina'

    updated = client.post(f"/admin/update-product/{product['id']}", json={
        'name': 'Makhana Pudina', 'price': 230, 'salePrice': 199, 'stockQuantity': 5, 'category': 'flavoured',
    }, headers=admin).get_json()
    assert (updated['price'], updated['salePrice'], updated['isFeatured']) == (230.0, 199.0, False)

    toggled = client.post(f"/admin/toggle-featured/{product['id']}", headers=admin).get_json()
    assert toggled == {'success': True, 'isFeatured': True}
    assert [p['name'] for p in client.get('/api/featured-products').get_json()] == ['Makhana Pudina']

    assert client.post(f"/admin/delete-product/{product['id']}", headers=admin).status_code == 200
    assert client.get('/admin/products', headers=admin).get_json() == []
    assert client.get(url, headers=admin).status_code == 404
    assert client.post(f"/admin/toggle-featured/{product['id']}", headers=admin).status_code == 404


@pytest.mark.parametrize('product', [
    {'price': 100},
    {'name': 'Makhana', 'price': 'free'},
    {'name': 'Makhana', 'price': -5},
    {'name': 'Makhana', 'price': 1e30},
    {'name': 'Makhana', 'price': 100, 'stockQuantity': -1},
    {'name': 'Makhana', 'price': 100, 'stockQuantity': 'lots'},
])
def test_admin_add_product_validation(client, admin, product):
    assert client.post('/admin/add-product', json=product, headers=admin).status_code == 400
    assert client.get('/admin/products', headers=admin).get_json() == []


def test_admin_user_and_review_listings(client, auth, admin):
    client.post('/api/user-login', json={'phone': '9876543210'}, headers=auth())
    deliver(client, admin, checkout(client, auth()).get_json()['orderId'])
    client.post('/api/submit-review', json={'productName': 'makhana-plain', 'rating': 5}, headers=auth())

    users = client.get('/admin/users', headers=admin).get_json()
    assert [(u['uid'], u['phone']) for u in users] == [('user-1', '9876543210')]

    (review,) = client.get('/admin/reviews', headers=admin).get_json()
    assert (review['userId'], review['rating']) == ('user-1', 5)


def test_admin_permanent_delete_user(client, auth, admin):
    order_id = checkout(client, auth()).get_json()['orderId']
    client.post('/api/my-addresses', json={
        'fullName': 'Asha Kumari', 'phoneNumber': '9876543210', 'street': 'Main Road', 'locality': 'Nathnagar',
        'city': 'Bhagalpur', 'pincode': '812006', 'state': 'Bihar', 'country': 'India',
    }, headers=auth())

    assert client.post('/admin/permanent-delete-user/user-1', headers=admin).status_code == 200

    assert client.get('/admin/users', headers=admin).get_json() == []
    assert client.get('/api/my-addresses', headers=auth()).get_json() == []
    assert [o['id'] for o in client.get('/admin/orders', headers=admin).get_json()['orders']] == [order_id]
    assert client.post('/admin/permanent-delete-user/user-1', headers=admin).status_code == 404


def test_admin_delete_coupon(client, admin):
    coupon = client.post('/admin/add-coupon', json={'code': 'MONSOON', 'discountType': 'fixed', 'discountValue': 75}, headers=admin).get_json()

    assert client.post(f"/admin/delete-coupon/{coupon['id']}", headers=admin).status_code == 200
    assert client.get('/admin/coupons', headers=admin).get_json() == []
    assert client.post(f"/admin/delete-coupon/{coupon['id']}", headers=admin).status_code == 404


def test_check_phone(client, auth):
    client.post('/api/user-login', json={'phone': '9876543210'}, headers=auth())

    assert client.post('/api/check-phone', json={'phone': '9876543210'}).get_json() == {'exists': True}
    assert client.post('/api/check-phone', json={'phone': '9000000000'}).get_json() == {'exists': False}
    assert client.post('/api/check-phone', json={}).status_code == 400
