# File: tests/conftest.py

import pytest

from ecofinds import create_app
from ecofinds.cart import CartEngine
from ecofinds.catalog import CatalogStore
from ecofinds.models import db
from ecofinds.session import SessionHolder


@pytest.fixture(params=['sql', 'local'])
def app(request, tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'STORAGE_BACKEND': request.param,
        'LOCAL_STORE_PATH': None,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
    })
    yield app
    if request.param == 'sql':
        with app.app_context():
            db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def storage(app, ctx):
    return app.extensions['ecofinds']


@pytest.fixture
def catalog(storage):
    return CatalogStore(storage)


@pytest.fixture
def cart(storage):
    return CartEngine(storage)


@pytest.fixture
def holder(storage):
    return SessionHolder(storage, {})


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(storage, email, username=None):
    return storage.insert('users', {
        'username': username or email.split('@')[0],
        'email': email,
        'password_hash': 'not-a-real-hash',
    })


def image(name='photo.jpg', data=b'\xff\xd8\xff\xe0fake-jpeg'):
    return (name, data)


@pytest.fixture
def seller(storage):
    return make_user(storage, 'seller@example.com')


@pytest.fixture
def buyer(storage):
    return make_user(storage, 'buyer@example.com')


@pytest.fixture
def make_product(catalog, seller):
    def _make(title='Retro Polaroid Camera', price='75.00', category='Electronics', owner=None):
        owner = owner or seller
        return catalog.create(owner['id'], {
            'title': title,
            'description': f'{title}, tested and working.',
            'category': category,
            'price': price,
        }, [image()])
    return _make
