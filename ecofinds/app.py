# ecofinds/app.py
import os
from functools import wraps

import click
from flask import Flask, current_app, g, jsonify, request, send_from_directory, session

from .blobs import LocalBlobStore
from .cart import CartEngine
from .catalog import CatalogStore, filter_products
from .config import CATEGORIES, GENDERS, Config
from .errors import MarketplaceError
from .models import db
from .session import SessionHolder
from .storage import LocalStorage, SQLAlchemyStorage

PRODUCT_FIELDS = ('title', 'description', 'category', 'price')


def build_storage(app):
    blobs = LocalBlobStore(app.config['UPLOAD_FOLDER'], app.config['UPLOAD_URL'],
                           app.config['MAX_FILE_SIZE'])
    backend = app.config['STORAGE_BACKEND']
    if backend == 'local':
        return LocalStorage(blobs, app.config['LOCAL_STORE_PATH'])
    if backend == 'sql':
        return SQLAlchemyStorage(db, blobs)
    raise ValueError(f'Unknown STORAGE_BACKEND: {backend!r}')


def create_app(config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)
    app.config['UPLOAD_FOLDER'] = os.path.abspath(app.config['UPLOAD_FOLDER'])
    db.init_app(app)

    if app.config['STORAGE_BACKEND'] == 'sql':
        with app.app_context():
            db.create_all()

    app.extensions['ecofinds'] = build_storage(app)
    app.register_error_handler(MarketplaceError, handle_marketplace_error)
    register_routes(app)
    register_commands(app)
    return app


def handle_marketplace_error(exc):
    current_app.logger.info('%s on %s: %s', type(exc).__name__, request.path, exc.message)
    return jsonify(error=exc.message), exc.status_code


def get_storage():
    return current_app.extensions['ecofinds']


def get_holder():
    if 'holder' not in g:
        g.holder = SessionHolder(get_storage(), session)
    return g.holder


def login_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        user = get_holder().current_user
        if user is None:
            return jsonify(error='Please login first.'), 401
        g.user = user
        return f(*args, **kwargs)
    return wrapped


def payload():
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def register_routes(app):

    @app.get('/api/meta')
    def meta():
        return jsonify(categories=CATEGORIES, genders=GENDERS)

    # ---------- auth / profile ----------
    @app.post('/api/auth/register')
    def register():
        data = payload()
        profile = get_holder().register(data.get('username'), data.get('email'), data.get('password'))
        return jsonify(profile), 201

    @app.post('/api/auth/login')
    def login():
        data = payload()
        return jsonify(get_holder().login(data.get('email'), data.get('password')))

    @app.post('/api/auth/logout')
    def logout():
        get_holder().logout()
        return jsonify(message='Logged out.')

    @app.get('/api/profile')
    @login_required
    def profile():
        return jsonify(g.user)

    @app.patch('/api/profile')
    @login_required
    def update_profile():
        avatar = request.files.get('avatar')
        return jsonify(get_holder().update_profile(payload(), avatar=avatar))

    # ---------- catalog ----------
    @app.get('/api/products')
    def list_products():
        products = CatalogStore(get_storage()).list()
        products = filter_products(products, request.args.get('search'), request.args.get('category'))
        return jsonify(products=products)

    @app.post('/api/products')
    @login_required
    def create_product():
        product = CatalogStore(get_storage()).create(
            g.user['id'], payload(), request.files.getlist('images'))
        return jsonify(product), 201

    @app.get('/api/products/mine')
    @login_required
    def my_listings():
        return jsonify(products=CatalogStore(get_storage()).list_mine(g.user['id']))

    @app.get('/api/products/sales')
    @login_required
    def my_sales():
        return jsonify(sales=CatalogStore(get_storage()).sales_for_seller(g.user['id']))

    @app.get('/api/products/<pid>')
    def product_detail(pid):
        return jsonify(CatalogStore(get_storage()).get_by_id(pid))

    @app.patch('/api/products/<pid>')
    @login_required
    def edit_product(pid):
        data = payload()
        if request.form:
            removed = request.form.getlist('removed_images')
        else:
            removed = data.get('removed_images') or []
        draft = {k: data[k] for k in PRODUCT_FIELDS if k in data}
        product = CatalogStore(get_storage()).update(
            g.user['id'], pid, draft,
            added_images=request.files.getlist('images'),
            removed_image_refs=removed)
        return jsonify(product)

    @app.delete('/api/products/<pid>')
    @login_required
    def delete_product(pid):
        failed = CatalogStore(get_storage()).delete(g.user['id'], pid)
        return jsonify(deleted=True, failed_images=failed)

    # ---------- cart / checkout ----------
    @app.get('/api/cart')
    @login_required
    def view_cart():
        engine = CartEngine(get_storage())
        return jsonify(items=engine.get_cart(g.user['id']), total=engine.cart_total(g.user['id']))

    @app.post('/api/cart')
    @login_required
    def add_to_cart():
        data = payload()
        line = CartEngine(get_storage()).add_to_cart(
            g.user['id'], data.get('product_id'), data.get('quantity', 1))
        return jsonify(line), 201

    @app.patch('/api/cart/<item_id>')
    @login_required
    def update_cart_item(item_id):
        line = CartEngine(get_storage()).update_quantity(
            g.user['id'], item_id, payload().get('quantity'))
        if line is None:
            return jsonify(removed=True)
        return jsonify(line)

    @app.delete('/api/cart/<item_id>')
    @login_required
    def remove_cart_item(item_id):
        CartEngine(get_storage()).remove_item(g.user['id'], item_id)
        return jsonify(removed=True)

    @app.delete('/api/cart')
    @login_required
    def clear_cart():
        return jsonify(cleared=CartEngine(get_storage()).clear_cart(g.user['id']))

    @app.post('/api/checkout')
    @login_required
    def checkout():
        result = CartEngine(get_storage()).checkout(g.user['id'], payload().get('address'))
        if result.warning:
            current_app.logger.warning('checkout for user %s: %s', g.user['id'], result.warning)
        status = 201 if result.purchases else 200
        return jsonify(purchases=result.purchases, total=result.total, warning=result.warning), status

    @app.get('/api/purchases')
    @login_required
    def purchases():
        return jsonify(purchases=CartEngine(get_storage()).list_purchases(g.user['id']))

    @app.get('/uploads/<path:path>')
    def uploads(path):
        return send_from_directory(current_app.config['UPLOAD_FOLDER'], path)


def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """Create the database tables."""
        db.create_all()
        click.echo('Database initialised.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Add the demo listings to an empty catalog."""
        created = CatalogStore(get_storage()).seed_demo_products()
        click.echo(f'Seeded {len(created)} product(s).')


if __name__ == '__main__':
    create_app().run(debug=True)
