from dataclasses import dataclass
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from storefront.errors import DependencyError

# helvetica has no rupee glyph
CURRENCY = 'Rs.'

LEFT = 50
RIGHT = 545
QTY_X = 360
UNIT_X = 450
LINE_HEIGHT = 16
BOTTOM_MARGIN = 60


@dataclass(frozen=True)
class StoreInfo:
    name: str
    address: str
    contact_email: str


def invoice_number(order):
    """INV-YYYYMMDD-00042, dated by the order, not by today"""
    return f"INV-{order.created_at.strftime('%Y%m%d')}-{order.id:05d}"


def display_name(product_id):
    # 'makhana-plain' -> 'Makhana Plain'
    return ' '.join(word.capitalize() for word in product_id.replace('-', ' ').split())


def money(amount):
    return f'{CURRENCY} {amount:,.2f}'


def render_invoice(order, store):
    """render the invoice pdf for an order and return its bytes"""
    try:
        return _render(order, store)
    except Exception as e:
        raise DependencyError(f'invoice rendering failed for order {order.id}') from e


def _render(order, store):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f'Invoice {invoice_number(order)}')
    width, height = A4
    y = height - 60

    c.setFont('Helvetica-Bold', 20)
    c.drawCentredString(width / 2, y, store.name)
    y -= 18
    c.setFont('Helvetica', 10)
    c.drawCentredString(width / 2, y, store.address)
    y -= 40

    c.setFont('Helvetica-Bold', 16)
    c.drawString(LEFT, y, 'INVOICE')
    y -= 20
    c.setFont('Helvetica', 10)
    for line in (
        f'Invoice #: {invoice_number(order)}',
        f'Order #: {order.id}',
        f"Order Date: {order.created_at.strftime('%d/%m/%Y')}",
    ):
        c.drawString(LEFT, y, line)
        y -= LINE_HEIGHT

    y -= 8
    c.setFont('Helvetica-Bold', 10)
    c.drawString(LEFT, y, 'Bill To:')
    y -= LINE_HEIGHT
    c.setFont('Helvetica', 10)
    for line in (order.customer_name, *order.address.splitlines(), f'Phone: {order.phone}'):
        c.drawString(LEFT, y, line)
        y -= LINE_HEIGHT

    # ---------- items ----------
    y -= 16
    c.setFont('Helvetica-Bold', 10)
    c.drawString(LEFT, y, 'Item')
    c.drawRightString(QTY_X, y, 'Qty')
    c.drawRightString(UNIT_X, y, 'Unit Price')
    c.drawRightString(RIGHT, y, 'Total')
    c.line(LEFT, y - 5, RIGHT, y - 5)
    y -= 22

    c.setFont('Helvetica', 10)
    for product_id, line in order.cart.items():
        if y < BOTTOM_MARGIN:
            c.showPage()
            c.setFont('Helvetica', 10)
            y = height - 60
        c.drawString(LEFT, y, display_name(product_id))
        c.drawRightString(QTY_X, y, str(line.quantity))
        c.drawRightString(UNIT_X, y, money(line.unit_price))
        c.drawRightString(RIGHT, y, money(line.line_total))
        y -= LINE_HEIGHT

    c.line(LEFT, y + 6, RIGHT, y + 6)
    y -= 12

    # ---------- summary ----------
    rows = [('Subtotal:', money(order.subtotal))]
    if order.discount > 0:
        label = f'Discount ({order.coupon_code}):' if order.coupon_code else 'Discount:'
        rows.append((label, f'- {money(order.discount)}'))
    rows.append(('Shipping:', money(order.shipping) if order.shipping > 0 else 'FREE'))
    for label, value in rows:
        c.drawRightString(UNIT_X, y, label)
        c.drawRightString(RIGHT, y, value)
        y -= LINE_HEIGHT

    c.setFont('Helvetica-Bold', 11)
    c.drawRightString(UNIT_X, y, 'Grand Total:')
    c.drawRightString(RIGHT, y, money(order.total))
    y -= 36

    c.setFont('Helvetica-Bold', 12)
    if order.is_cash_on_delivery:
        c.drawString(LEFT, y, 'Payment Status: Cash on Delivery (COD)')
        y -= LINE_HEIGHT
        c.drawString(LEFT, y, f'Amount to be Paid on Delivery: {money(order.total)}')
    else:
        c.drawString(LEFT, y, 'Payment Status: PAID')
        y -= LINE_HEIGHT
        c.drawString(LEFT, y, f'Payment ID: {order.payment_reference}')

    c.setFont('Helvetica', 8)
    c.drawCentredString(width / 2, 30, f'Questions? Write to {store.contact_email}')

    c.showPage()
    c.save()
    return buf.getvalue()
