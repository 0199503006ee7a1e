# ecofinds/catalog.py
import logging
import uuid
from decimal import Decimal, InvalidOperation

from werkzeug.security import generate_password_hash

from .blobs import blob_path, read_upload
from .config import ALL_CATEGORIES, CATEGORIES
from .errors import AuthorizationError, NotFound, UploadFailed, ValidationError
from .session import public_profile
from .storage import same_id

log = logging.getLogger(__name__)

DEMO_SELLER = {'username': 'EcoFindsDemo', 'email': 'demo@ecofinds.local'}

DEMO_PRODUCTS = [
    {'title': 'Vintage Leather Sofa', 'price': '450', 'category': 'Furniture',
     'description': 'A beautiful and comfortable vintage leather sofa, perfect for any living room. '
                    'Minor wear consistent with age.',
     'images': ['https://picsum.photos/seed/sofa/600/400']},
    {'title': 'Retro Polaroid Camera', 'price': '75', 'category': 'Electronics',
     'description': 'Classic Polaroid 600 instant camera. Tested and working.',
     'images': ['https://picsum.photos/seed/camera/600/400']},
    {'title': 'Classic Denim Jacket', 'price': '40', 'category': 'Clothing',
     'description': 'A timeless denim jacket in great condition. Size Medium. No stains or tears.',
     'images': ['https://picsum.photos/seed/jacket/600/400']},
    {'title': 'Hardcover Novel Set', 'price': '25', 'category': 'Books',
     'description': 'A collection of 5 popular hardcover novels. All in excellent, like-new condition.',
     'images': ['https://picsum.photos/seed/books/600/400']},
    {'title': 'Antique Wooden Chair', 'price': '120', 'category': 'Furniture',
     'description': 'Hand-carved wooden chair with intricate details. Structurally sound.',
     'images': ['https://picsum.photos/seed/chair/600/400']},
    {'title': 'Modern Coffee Maker', 'price': '35', 'category': 'Home Goods',
     'description': 'Barely used drip coffee maker with a thermal carafe. Clean and descaled.',
     'images': ['https://picsum.photos/seed/coffee/600/400']},
]


def parse_price(raw):
    try:
        price = Decimal(str(raw).strip()).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        raise ValidationError('Invalid price.') from None
    if not price.is_finite() or price <= 0:
        raise ValidationError('Price must be greater than zero.')
    return price


def validate_draft(draft, partial=False):
    """Clean the editable listing fields; with ``partial`` only those given."""
    fields = {}
    for name in ('title', 'description', 'category'):
        if name in draft or not partial:
            value = (draft.get(name) or '').strip()
            if not value:
                raise ValidationError(f'{name.capitalize()} required.')
            fields[name] = value
    if 'category' in fields and fields['category'] not in CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORIES)}")
    if 'price' in draft or not partial:
        fields['price'] = parse_price(draft.get('price'))
    return fields


def filter_products(products, search_term=None, category=None):
    term = (search_term or '').strip().lower()
    matches = []
    for product in products:
        if category and category != ALL_CATEGORIES and product['category'] != category:
            continue
        if term and term not in (product.get('title') or '').lower():
            continue
        matches.append(product)
    return matches


def newest_first(rows, field):
    # rows come back in insertion order; equal timestamps keep the later row first
    return sorted(reversed(rows), key=lambda r: r[field], reverse=True)


class CatalogStore:

    def __init__(self, storage):
        self.storage = storage

    def _sellers(self):
        return {str(u['id']): public_profile(u) for u in self.storage.get('users')}

    def _with_seller(self, product, sellers=None):
        if sellers is None:
            rows = self.storage.get('users', id=product['seller_id'])
            seller = public_profile(rows[0]) if rows else None
        else:
            seller = sellers.get(str(product['seller_id']))
        return dict(product, seller=seller)

    def list(self):
        sellers = self._sellers()
        products = newest_first(self.storage.get('products'), 'created_at')
        return [self._with_seller(p, sellers) for p in products]

    def list_mine(self, user_id):
        rows = self.storage.get('products', seller_id=user_id)
        return newest_first([p for p in rows if same_id(p['seller_id'], user_id)], 'created_at')

    def get_by_id(self, product_id):
        return self._with_seller(self.storage.get_one('products', product_id))

    def _owned(self, user_id, product_id):
        product = self.storage.get_one('products', product_id)
        if not same_id(product['seller_id'], user_id):
            raise AuthorizationError('Not allowed.')
        return product

    def _upload(self, user_id, images):
        urls = []
        for image in images:
            filename, data = read_upload(image)
            try:
                urls.append(self.storage.store_blob(blob_path(f'products/{user_id}', filename), data))
            except UploadFailed:
                self._discard(urls)
                raise
        return urls

    def _discard(self, urls):
        """Best-effort blob removal; returns the refs that could not be removed."""
        failed = []
        for url in urls:
            path = self.storage.path_for(url)
            if path is None:
                continue
            try:
                self.storage.remove_blob(path)
            except (NotFound, OSError) as exc:
                log.warning('could not remove image %s: %s', url, exc)
                failed.append(url)
        return failed

    def create(self, user_id, draft, images):
        fields = validate_draft(draft)
        images = list(images or [])
        if not images:
            raise ValidationError('At least one image is required.')
        self.storage.get_one('users', user_id)
        urls = self._upload(user_id, images)
        try:
            product = self.storage.insert('products', dict(fields, seller_id=user_id, images=urls))
        except Exception:
            self._discard(urls)
            raise
        log.info('user %s listed product %s', user_id, product['id'])
        return product

    def update(self, user_id, product_id, draft=None, added_images=(), removed_image_refs=()):
        product = self._owned(user_id, product_id)
        fields = validate_draft(draft or {}, partial=True)
        added_images = list(added_images or [])
        removed = set(removed_image_refs or [])
        kept = [url for url in product['images'] if url not in removed]
        if not kept and not added_images:
            raise ValidationError('A listing needs at least one image.')

        self._discard([url for url in product['images'] if url in removed])
        try:
            uploaded = self._upload(user_id, added_images)
        except UploadFailed:
            self._forget_removed(product, kept)
            raise
        fields['images'] = kept + uploaded
        try:
            return self.storage.update('products', product['id'], fields)
        except Exception:
            self._discard(uploaded)
            self._forget_removed(product, kept)
            raise

    def _forget_removed(self, product, kept):
        # don't leave references to blobs that are already gone
        if kept and len(kept) != len(product['images']):
            self.storage.update('products', product['id'], {'images': kept})

    def delete(self, user_id, product_id):
        """
        Delete a listing, its cart lines and its images.

        Purchases that reference the listing are kept. Returns the image refs
        whose blobs could not be removed.
        """
        product = self._owned(user_id, product_id)
        self.storage.delete_where('cart_items', product_id=product['id'])
        self.storage.delete('products', product['id'])
        log.info('user %s deleted product %s', user_id, product['id'])
        return self._discard(product['images'])

    def sales_for_seller(self, user_id):
        sales = []
        for product in self.list_mine(user_id):
            for purchase in self.storage.get('purchases', product_id=product['id']):
                sales.append(dict(purchase, product=product))
        return newest_first(sales, 'purchased_at')

    def seed_demo_products(self):
        if self.storage.get('products'):
            return []
        sellers = self.storage.get('users', email=DEMO_SELLER['email'])
        if sellers:
            seller = sellers[0]
        else:
            seller = self.storage.insert('users', dict(
                DEMO_SELLER, password_hash=generate_password_hash(uuid.uuid4().hex)))
        rows = [dict(validate_draft(p), images=list(p['images']), seller_id=seller['id'])
                for p in DEMO_PRODUCTS]
        return self.storage.insert_many('products', rows)
