import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from models import db
from models.product import Product


SHIPPING = {
    'shipping_address': '1 Kennel Road',
    'shipping_city': 'Dogtown',
    'shipping_postal_code': '12345',
    'shipping_country': 'NL',
    'customer_email': 'owner@example.com',
    'customer_name': 'Pat Owner',
}


@pytest.fixture(scope='session')
def app_instance():
    os.environ.setdefault('APP_ENV', 'testing')
    os.environ.setdefault('CELERY_TASK_ALWAYS_EAGER', '1')
    os.environ.pop('MAIL_SERVER', None)
    from petshop import create_app
    from petshop.config import TestingConfig
    app = create_app(TestingConfig)
    app.config.update(TESTING=True, MAIL_SERVER=None)
    return app


@pytest.fixture(scope='function')
def app(app_instance):
    with app_instance.app_context():
        db.drop_all()
        db.create_all()
        yield app_instance
        db.session.remove()
        db.drop_all()


def _make_product(name='Dog Food', price='10.00', stock=10, category='Food', is_active=True):
    product = Product(
        name=name,
        category=category,
        price=Decimal(price),
        stock_quantity=stock,
        is_active=is_active,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture()
def make_product(app):
    return _make_product


@pytest.fixture()
def products(app):
    return {
        'food': _make_product('Dog Food', '10.00', 10, 'Food'),
        'toy': _make_product('Chew Toy', '4.50', 5, 'Toys'),
        'leash': _make_product('Leash', '15.25', 2, 'Accessories'),
    }


@pytest.fixture()
def shipping():
    return dict(SHIPPING)
