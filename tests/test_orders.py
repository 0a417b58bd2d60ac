import re
from decimal import Decimal

import pytest

from models import db
from models.cart import CartItem
from models.order import Order, OrderItem, OrderStatus
from models.product import Product
from petshop.exceptions import Conflict, NotFound, StateError, ValidationError
from petshop.services.orders import OrderService


class RecordingDispatcher:
    def __init__(self, result=True):
        self.calls = []
        self.result = result

    def send_order_confirmation(self, *args):
        self.calls.append(args)
        return self.result


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def service(app, dispatcher):
    return OrderService(dispatcher=dispatcher)


def stock_of(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock_quantity


def fill_cart(service, user_id, session_id, *lines):
    cart = service.carts.get_or_create_cart(user_id, session_id)
    for product, quantity in lines:
        service.carts.add_item(cart, product.id, quantity)
    return cart


def place(service, products, shipping, user_id='u1', session_id='s1', quantity=1):
    fill_cart(service, user_id, session_id, (products['food'], quantity))
    return service.create_order(user_id, session_id, shipping)


# -------------------- Checkout --------------------

def test_checkout_moves_cart_into_order(service, products, shipping, dispatcher):
    food, toy = products['food'], products['toy']
    cart = fill_cart(service, 'u1', 's1', (food, 2), (toy, 3))

    order = service.create_order('u1', 's1', shipping)

    assert order.status == OrderStatus.PENDING.value
    assert re.match(r'^ORD-\d{8}-[A-Z0-9]{8}$', order.order_number)
    assert order.total_amount == Decimal('33.50')
    assert order.customer_email == 'owner@example.com'

    items = service.get_order_items(order)
    assert [(i.product_id, i.quantity, i.unit_price) for i in items] == [
        (food.id, 2, Decimal('10.00')),
        (toy.id, 3, Decimal('4.50')),
    ]
    assert items[0].product_name == 'Dog Food'
    assert sum(i.total_price for i in items) == order.total_amount

    assert stock_of(food.id) == 8
    assert stock_of(toy.id) == 2
    assert CartItem.query.filter_by(cart_id=cart.id).count() == 0

    assert len(dispatcher.calls) == 1
    to, name, number, total, descriptions = dispatcher.calls[0]
    assert (to, name, number, total) == ('owner@example.com', 'Pat Owner', order.order_number, Decimal('33.50'))
    assert descriptions == ['Dog Food x2', 'Chew Toy x3']


def test_order_keeps_cart_price_snapshot(service, products, shipping):
    toy = products['toy']
    fill_cart(service, 'u1', 's1', (toy, 2))
    toy.price = Decimal('99.00')
    db.session.commit()

    order = service.create_order('u1', 's1', shipping)
    assert order.total_amount == Decimal('9.00')
    assert service.get_order_items(order)[0].unit_price == Decimal('4.50')


def test_empty_cart_cannot_be_ordered(service, products, shipping):
    with pytest.raises(ValidationError) as exc:
        service.create_order('u1', 's1', shipping)
    assert exc.value.message == 'cart empty'
    assert Order.query.count() == 0


def test_invalid_shipping_rejected(service, products, shipping):
    fill_cart(service, 'u1', 's1', (products['food'], 1))
    shipping['customer_email'] = 'not-an-email'
    with pytest.raises(ValidationError):
        service.create_order('u1', 's1', shipping)
    del shipping['customer_email']
    with pytest.raises(ValidationError):
        service.create_order('u1', 's1', shipping)
    assert stock_of(products['food'].id) == 10


def test_stock_drained_after_add_fails_checkout_atomically(service, products, shipping):
    food, leash = products['food'], products['leash']
    cart = fill_cart(service, 'u1', 's1', (food, 3), (leash, 2))

    # Someone else bought the leashes in the meantime.
    leash.stock_quantity = 1
    db.session.commit()

    with pytest.raises(Conflict) as exc:
        service.create_order('u1', 's1', shipping)
    assert exc.value.message == 'insufficient stock'

    assert stock_of(food.id) == 10
    assert stock_of(leash.id) == 1
    assert Order.query.count() == 0
    assert service.carts.get_item_count(cart) == 5


def test_deactivated_product_fails_checkout(service, products, shipping):
    food, toy = products['food'], products['toy']
    cart = fill_cart(service, 'u1', 's1', (toy, 2), (food, 1))
    food.is_active = False
    db.session.commit()

    with pytest.raises(Conflict) as exc:
        service.create_order('u1', 's1', shipping)
    assert exc.value.message == 'product unavailable'

    assert stock_of(toy.id) == 5
    assert stock_of(food.id) == 10
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0
    assert CartItem.query.filter_by(cart_id=cart.id).count() == 2
    assert service.carts.get_item_count(cart) == 3


def test_anonymous_checkout(service, products, shipping):
    order = place(service, products, shipping, user_id=None, session_id='guest')
    assert order.user_id is None
    assert order.session_id == 'guest'


def test_notification_failure_does_not_fail_order(app, products, shipping):
    service = OrderService(dispatcher=RecordingDispatcher(result=False))
    order = place(service, products, shipping)
    assert db.session.get(Order, order.id) is not None


def test_order_numbers_are_unique(service, products, shipping):
    numbers = {place(service, products, shipping).order_number for _ in range(5)}
    assert len(numbers) == 5


def test_order_number_prefix_from_config(app, products, shipping, monkeypatch):
    monkeypatch.setitem(app.config, 'ORDER_NUMBER_PREFIX', 'PET')
    order = place(OrderService(dispatcher=RecordingDispatcher()), products, shipping)
    assert order.order_number.startswith('PET-')


# -------------------- Lookup --------------------

def test_get_order_checks_owner(service, products, shipping):
    order = place(service, products, shipping, user_id='u1')
    assert service.get_order(order.id).id == order.id
    assert service.get_order(order.id, user_id='u1').id == order.id
    with pytest.raises(NotFound):
        service.get_order(order.id, user_id='u2')
    with pytest.raises(NotFound):
        service.get_order(999)


def test_list_orders_paginates_newest_first(service, products, shipping):
    placed = [place(service, products, shipping) for _ in range(3)]
    place(service, products, shipping, user_id='u2', session_id='s2')

    page = service.list_orders(user_id='u1', page=1, page_size=2)
    assert page.total_count == 3
    assert page.total_pages == 2
    assert page.has_previous_page is False
    assert page.has_next_page is True
    assert [o.id for o in page.items] == [placed[2].id, placed[1].id]
    assert all(o.item_count == 1 for o in page.items)

    last = service.list_orders(user_id='u1', page=2, page_size=2)
    assert [o.id for o in last.items] == [placed[0].id]
    assert last.has_previous_page is True
    assert last.has_next_page is False

    assert service.list_orders().total_count == 4


def test_list_orders_validates_and_caps_page_size(app, service, monkeypatch):
    with pytest.raises(ValidationError):
        service.list_orders(page=0)
    with pytest.raises(ValidationError):
        service.list_orders(page_size=0)

    monkeypatch.setitem(app.config, 'MAX_PAGE_SIZE', 2)
    page = service.list_orders(page_size=50)
    assert page.page_size == 2
    assert page.total_pages == 0
    assert page.items == []


def test_list_user_orders(service, products, shipping):
    first = place(service, products, shipping, user_id='u1')
    second = place(service, products, shipping, user_id='u1')
    place(service, products, shipping, user_id='u2', session_id='s2')
    assert [o.id for o in service.list_user_orders('u1')] == [second.id, first.id]


# -------------------- Cancellation & status --------------------

def test_cancel_restores_stock(service, products, shipping):
    order = place(service, products, shipping, quantity=4)
    assert stock_of(products['food'].id) == 6

    assert service.cancel_order(order.id, user_id='u1') is True
    assert service.get_order(order.id).status == OrderStatus.CANCELLED.value
    assert stock_of(products['food'].id) == 10

    with pytest.raises(StateError):
        service.cancel_order(order.id)
    assert stock_of(products['food'].id) == 10


def test_cancel_unknown_or_foreign_order(service, products, shipping):
    order = place(service, products, shipping, user_id='u1')
    assert service.cancel_order(4242) is False
    assert service.cancel_order(order.id, user_id='u2') is False
    assert service.get_order(order.id).status == OrderStatus.PENDING.value


def test_status_machine(service, products, shipping):
    order = place(service, products, shipping)

    assert service.update_status(order.id, 'Processing') is True
    with pytest.raises(StateError):
        service.cancel_order(order.id)
    with pytest.raises(StateError):
        service.update_status(order.id, 'Pending')

    assert service.update_status(order.id, OrderStatus.SHIPPED) is True
    assert service.get_order(order.id).status == 'Shipped'
    with pytest.raises(StateError):
        service.update_status(order.id, 'Processing')

    with pytest.raises(ValidationError):
        service.update_status(order.id, 'Lost')
    assert service.update_status(4242, 'Processing') is False


def test_update_status_to_cancelled_restores_stock(service, products, shipping):
    order = place(service, products, shipping, quantity=3)
    assert service.update_status(order.id, 'Cancelled') is True
    assert stock_of(products['food'].id) == 10


def test_stock_is_conserved_across_orders(service, products, shipping):
    food = products['food']
    kept = place(service, products, shipping, quantity=2)
    cancelled = place(service, products, shipping, quantity=3)
    service.cancel_order(cancelled.id)

    sold = sum(
        i.quantity
        for i in OrderItem.query.join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status != 'Cancelled', OrderItem.product_id == food.id)
    )
    assert sold == 2
    assert stock_of(food.id) + sold == 10
    assert kept.status == 'Pending'


# -------------------- Reporting --------------------

def test_top_products_ranks_by_quantity_and_skips_cancelled(service, products, shipping):
    food, toy, leash = products['food'], products['toy'], products['leash']
    fill_cart(service, 'u1', 's1', (toy, 3), (food, 1))
    service.create_order('u1', 's1', shipping)
    fill_cart(service, 'u1', 's1', (toy, 1), (leash, 2))
    service.create_order('u1', 's1', shipping)

    fill_cart(service, 'u1', 's1', (food, 5))
    cancelled = service.create_order('u1', 's1', shipping)
    service.cancel_order(cancelled.id)

    top = service.top_products(count=2)
    assert [(t.product_id, t.total_quantity_sold, t.total_orders) for t in top] == [
        (toy.id, 4, 2),
        (leash.id, 2, 1),
    ]
    assert top[0].product_name == 'Chew Toy'
    assert top[0].category == 'Toys'
    assert top[0].price == Decimal('4.50')

    with pytest.raises(ValidationError):
        service.top_products(count=0)
