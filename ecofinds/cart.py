# ecofinds/cart.py
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from .catalog import newest_first
from .errors import AuthorizationError, NotFound, ValidationError
from .storage import same_id

log = logging.getLogger(__name__)


def line_total(price, quantity):
    return Decimal(price) * quantity


@dataclass
class CheckoutResult:
    purchases: list = field(default_factory=list)
    # set when the order went through but the cart could not be emptied
    warning: str = None

    @property
    def total(self):
        return sum((line_total(p['price'], p['quantity']) for p in self.purchases), Decimal('0.00'))


def _quantity(raw):
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError('Quantity must be a whole number.')
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError('Quantity must be a whole number.') from None


class CartEngine:
    """
    Cart lines and the purchase ledger for whoever is signed in.

    Every operation takes the acting user's id explicitly. ``cart`` and
    ``purchases`` are convenience views for the tracked user; they are
    refreshed after each change and on session transitions.
    """

    def __init__(self, storage, session=None):
        self.storage = storage
        self.user_id = None
        self.cart = []
        self.purchases = []
        if session is not None:
            session.subscribe(self.on_session_change)
            if session.current_user_id is not None:
                self.on_session_change(session.current_user)

    def on_session_change(self, profile):
        if profile is None:
            self.user_id = None
            self.cart = []
            self.purchases = []
        else:
            self.user_id = profile['id']
            self._refresh(self.user_id)

    def _refresh(self, user_id):
        if same_id(user_id, self.user_id):
            self.cart = self.get_cart(user_id)
            self.purchases = self.list_purchases(user_id)

    def _line(self, user_id, item_id):
        rows = self.storage.get('cart_items', id=item_id)
        if not rows:
            return None
        if not same_id(rows[0]['user_id'], user_id):
            raise AuthorizationError('Not allowed')
        return rows[0]

    def get_cart(self, user_id):
        lines = []
        for line in self.storage.get('cart_items', user_id=user_id):
            rows = self.storage.get('products', id=line['product_id'])
            if rows:
                lines.append(dict(line, product=rows[0]))
        return lines

    def cart_total(self, user_id):
        return sum((line_total(l['product']['price'], l['quantity']) for l in self.get_cart(user_id)),
                   Decimal('0.00'))

    def add_to_cart(self, user_id, product_id, quantity=1):
        quantity = _quantity(quantity)
        product = self.storage.get_one('products', product_id)
        if same_id(product['seller_id'], user_id):
            raise ValidationError("You can't add your own listing to your cart.")
        existing = self.storage.get('cart_items', user_id=user_id, product_id=product['id'])
        if existing:
            line = existing[0]
            line = self.storage.update('cart_items', line['id'],
                                       {'quantity': max(1, line['quantity'] + quantity)})
        else:
            line = self.storage.insert('cart_items', {
                'user_id': user_id,
                'product_id': product['id'],
                'quantity': max(1, quantity),
            })
        self._refresh(user_id)
        return line

    def update_quantity(self, user_id, item_id, quantity):
        quantity = _quantity(quantity)
        line = self._line(user_id, item_id)
        if line is None:
            raise NotFound(f'Cart item {item_id} not found')
        if quantity < 1:
            self.remove_item(user_id, item_id)
            return None
        line = self.storage.update('cart_items', line['id'], {'quantity': quantity})
        self._refresh(user_id)
        return line

    def remove_item(self, user_id, item_id):
        line = self._line(user_id, item_id)
        if line is None:
            return
        self.storage.delete('cart_items', line['id'])
        self._refresh(user_id)

    def clear_cart(self, user_id):
        count = self.storage.delete_where('cart_items', user_id=user_id)
        self._refresh(user_id)
        return count

    def checkout(self, user_id, address=None):
        """
        Turn the cart into purchase records.

        Prices and quantities are copied from the cart as it is read here.
        The purchases are written in one batch before any cart line is
        deleted; if the batch fails the cart is untouched. Once the batch is
        written the sale stands, and a failure to empty the cart is only
        reported through ``CheckoutResult.warning``.
        """
        lines = self.get_cart(user_id)
        if not lines:
            return CheckoutResult()

        if address is None:
            users = self.storage.get('users', id=user_id)
            address = users[0].get('address') if users else None
        order_id = uuid.uuid4().hex
        records = [{
            'order_id': order_id,
            'user_id': user_id,
            'product_id': line['product_id'],
            'title': line['product']['title'],
            'price': line['product']['price'],
            'quantity': line['quantity'],
            'address': address,
        } for line in lines]
        purchases = self.storage.insert_many('purchases', records)
        log.info('order %s: user %s bought %d line(s)', order_id, user_id, len(purchases))

        result = CheckoutResult(purchases=purchases)
        try:
            for line in lines:
                self.storage.delete('cart_items', line['id'])
        except Exception as exc:
            log.warning('order %s: cart for user %s not cleared: %s', order_id, user_id, exc)
            result.warning = 'Your order was placed, but the cart could not be cleared.'
        self._refresh(user_id)
        return result

    def list_purchases(self, user_id):
        purchases = []
        for purchase in self.storage.get('purchases', user_id=user_id):
            rows = self.storage.get('products', id=purchase['product_id'])
            purchases.append(dict(purchase, product=rows[0] if rows else None))
        return newest_first(purchases, 'purchased_at')
