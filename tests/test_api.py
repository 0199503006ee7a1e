# File: tests/test_api.py

"""
End-to-end flows through the Flask JSON API, using Flask's test client.
"""

import io
import logging


def register(client, name):
    resp = client.post('/api/auth/register', json={
        'username': name, 'email': f'{name}@example.com', 'password': 'pw',
    })
    assert resp.status_code == 201
    return resp.get_json()


def list_product(client, title='Classic Denim Jacket', price='40.00'):
    resp = client.post('/api/products', data={
        'title': title,
        'description': 'Size Medium. No stains or tears.',
        'category': 'Clothing',
        'price': price,
        'images': [(io.BytesIO(b'jpeg-bytes'), 'jacket.jpg')],
    }, content_type='multipart/form-data')
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_meta(client):
    data = client.get('/api/meta').get_json()
    assert 'Home Goods' in data['categories']


def test_protected_routes_need_login(client):
    assert client.get('/api/cart').status_code == 401
    assert client.post('/api/checkout').status_code == 401
    assert client.get('/api/profile').status_code == 401


def test_register_login_logout(client):
    register(client, 'alice')
    assert client.get('/api/profile').get_json()['username'] == 'alice'
    client.post('/api/auth/logout')
    assert client.get('/api/profile').status_code == 401

    resp = client.post('/api/auth/login', json={'email': 'alice@example.com', 'password': 'bad'})
    assert resp.status_code == 401
    resp = client.post('/api/auth/login', json={'email': 'alice@example.com', 'password': 'pw'})
    assert resp.status_code == 200


def test_duplicate_registration_conflicts(client):
    register(client, 'alice')
    resp = client.post('/api/auth/register', json={
        'username': 'again', 'email': 'alice@example.com', 'password': 'pw',
    })
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'Email already registered.'


def test_update_profile(client):
    register(client, 'alice')
    resp = client.patch('/api/profile', json={'bio': 'Thrift queen', 'gender': 'Female'})
    assert resp.status_code == 200
    assert resp.get_json()['bio'] == 'Thrift queen'


def test_listing_lifecycle(client):
    register(client, 'seller')
    product = list_product(client)
    image_url = product['images'][0]
    assert client.get(image_url).data == b'jpeg-bytes'

    products = client.get('/api/products?search=denim&category=Clothing').get_json()['products']
    assert [p['id'] for p in products] == [product['id']]
    assert client.get('/api/products?category=Books').get_json()['products'] == []

    resp = client.patch(f"/api/products/{product['id']}", json={'price': '35'})
    assert resp.get_json()['price'] == '35.00'

    mine = client.get('/api/products/mine').get_json()['products']
    assert len(mine) == 1

    resp = client.delete(f"/api/products/{product['id']}")
    assert resp.get_json() == {'deleted': True, 'failed_images': []}
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_invalid_listing_is_rejected(client):
    register(client, 'seller')
    resp = client.post('/api/products', data={
        'title': 'Free stuff', 'description': 'x', 'category': 'Other', 'price': '0',
    }, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert client.get('/api/products').get_json()['products'] == []


def test_other_users_cannot_edit(client):
    register(client, 'seller')
    product = list_product(client)
    client.post('/api/auth/logout')
    register(client, 'mallory')
    resp = client.delete(f"/api/products/{product['id']}")
    assert resp.status_code == 403


def test_cart_and_checkout(client):
    register(client, 'seller')
    jacket = list_product(client, 'Jacket', '10.00')
    mug = list_product(client, 'Mug', '5.00')
    client.post('/api/auth/logout')

    register(client, 'buyer')
    client.post('/api/cart', json={'product_id': jacket['id']})
    line = client.post('/api/cart', json={'product_id': mug['id'], 'quantity': 2}).get_json()
    client.patch(f"/api/cart/{line['id']}", json={'quantity': 3})

    cart = client.get('/api/cart').get_json()
    assert len(cart['items']) == 2
    assert cart['total'] == '25.00'

    resp = client.post('/api/checkout', json={'address': '12 Elm Street'})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['total'] == '25.00'
    assert body['warning'] is None
    assert client.get('/api/cart').get_json()['items'] == []

    history = client.get('/api/purchases').get_json()['purchases']
    assert sorted(p['title'] for p in history) == ['Jacket', 'Mug']

    # nothing left to buy
    resp = client.post('/api/checkout', json={})
    assert resp.status_code == 200
    assert resp.get_json()['purchases'] == []

    client.post('/api/auth/logout')
    client.post('/api/auth/login', json={'email': 'seller@example.com', 'password': 'pw'})
    sales = client.get('/api/products/sales').get_json()['sales']
    assert len(sales) == 2


def test_remove_cart_item_twice(client):
    register(client, 'seller')
    product = list_product(client)
    client.post('/api/auth/logout')
    register(client, 'buyer')
    line = client.post('/api/cart', json={'product_id': product['id']}).get_json()
    assert client.delete(f"/api/cart/{line['id']}").status_code == 200
    assert client.delete(f"/api/cart/{line['id']}").status_code == 200
    assert client.delete('/api/cart').get_json() == {'cleared': 0}


def test_handled_errors_are_logged(app, client, caplog):
    caplog.set_level(logging.INFO, logger=app.logger.name)
    resp = client.post('/api/auth/login', json={'email': 'ghost@example.com', 'password': 'pw'})
    assert resp.status_code == 401
    assert 'InvalidCredentials on /api/auth/login' in caplog.text
