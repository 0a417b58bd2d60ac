import time

import pytest
from sqlalchemy.exc import OperationalError

from models import db
from models.cart import CartItem
from models.order import Order, OrderItem
from models.product import Product
from petshop.exceptions import StorageTimeout, TransientStorageError
from petshop.schemas import ShippingInfo
from petshop.services.cart import CartStore
from petshop.services.checkout import CheckoutTransaction
from petshop.services.stock import StockLedger


def stock_of(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock_quantity


@pytest.fixture()
def loaded_cart(app, products):
    store = CartStore()
    cart = store.get_or_create_cart('u1', 's1')
    store.add_item(cart, products['food'].id, 3)
    store.add_item(cart, products['toy'].id, 2)
    return store, cart


def assert_untouched(cart, products):
    assert stock_of(products['food'].id) == 10
    assert stock_of(products['toy'].id) == 5
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0
    assert CartItem.query.filter_by(cart_id=cart.id).count() == 2


def test_failure_after_decrement_rolls_back_everything(loaded_cart, products, shipping, monkeypatch):
    store, cart = loaded_cart

    def explode(cart_id):
        raise RuntimeError('disk full')

    monkeypatch.setattr(store, 'delete_lines', explode)
    checkout = CheckoutTransaction(carts=store)

    with pytest.raises(RuntimeError):
        checkout.place(cart, ShippingInfo(**shipping), user_id='u1', session_id='s1')
    assert_untouched(cart, products)


def test_storage_error_surfaces_as_transient(loaded_cart, products, shipping, monkeypatch):
    store, cart = loaded_cart

    def broken(cart_id):
        raise OperationalError('DELETE FROM cart_item', {}, Exception('connection reset'))

    monkeypatch.setattr(store, 'delete_lines', broken)
    checkout = CheckoutTransaction(carts=store)

    with pytest.raises(TransientStorageError):
        checkout.place(cart, ShippingInfo(**shipping), user_id='u1', session_id='s1')
    assert_untouched(cart, products)


def test_timeout_before_commit_rolls_back(loaded_cart, products, shipping):
    store, cart = loaded_cart

    class SlowLedger(StockLedger):
        def decrement(self, product_id, quantity):
            super().decrement(product_id, quantity)
            time.sleep(0.05)

    checkout = CheckoutTransaction(carts=store, ledger=SlowLedger(), timeout=0.01)

    with pytest.raises(StorageTimeout):
        checkout.place(cart, ShippingInfo(**shipping), user_id='u1', session_id='s1')
    assert_untouched(cart, products)


def test_place_bumps_cart_timestamp(loaded_cart, products, shipping):
    store, cart = loaded_cart
    before = cart.updated_at

    time.sleep(0.01)
    order, items = CheckoutTransaction(carts=store).place(
        cart, ShippingInfo(**shipping), user_id='u1', session_id='s1'
    )

    assert order.id is not None
    assert len(items) == 2
    assert cart.updated_at > before
