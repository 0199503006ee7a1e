# ecofinds/storage.py
"""
Persistence adapters.

Both backends speak the same record-level contract: plain dicts in, plain
dicts out, one collection per record kind (``users``, ``products``,
``cart_items``, ``purchases``). Business rules live in the stores built on
top of an adapter; the adapter only enforces uniqueness and existence.
"""
import copy
import json
import os
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ConstraintViolation, NotFound, UnknownCollection
from .models import CartItem, Product, Purchase, User, utcnow

COLLECTIONS = ('users', 'products', 'cart_items', 'purchases')


def same_id(a, b):
    return a is not None and b is not None and str(a) == str(b)


class StorageAdapter:
    """CRUD over the four collections plus blob storage for images."""

    def __init__(self, blobs):
        self.blobs = blobs

    def get(self, collection, **filters):
        raise NotImplementedError

    def get_one(self, collection, id):
        rows = self.get(collection, id=id)
        if not rows:
            raise NotFound(f'{collection} record {id} not found')
        return rows[0]

    def insert(self, collection, record):
        return self.insert_many(collection, [record])[0]

    def insert_many(self, collection, records):
        raise NotImplementedError

    def update(self, collection, id, partial):
        raise NotImplementedError

    def delete(self, collection, id):
        raise NotImplementedError

    def delete_where(self, collection, **filters):
        raise NotImplementedError

    def store_blob(self, path, data):
        return self.blobs.store(path, data)

    def remove_blob(self, path):
        self.blobs.remove(path)

    def path_for(self, url):
        return self.blobs.path_for(url)


class SQLAlchemyStorage(StorageAdapter):
    MODELS = {
        'users': User,
        'products': Product,
        'cart_items': CartItem,
        'purchases': Purchase,
    }

    def __init__(self, db, blobs):
        super().__init__(blobs)
        self.db = db

    def _model(self, collection):
        try:
            return self.MODELS[collection]
        except KeyError:
            raise UnknownCollection(collection) from None

    @staticmethod
    def _to_dict(obj):
        record = {c.name: getattr(obj, c.name) for c in obj.__table__.columns}
        if 'images' in record:
            record['images'] = list(record['images'] or [])
        return record

    @staticmethod
    def _coerce(model, key, value):
        column = model.__table__.columns.get(key)
        if column is None:
            raise ValueError(f'{model.__tablename__} has no field {key!r}')
        if value is not None and isinstance(column.type, Integer):
            return int(value)
        return value

    def _filters(self, model, filters):
        return {k: self._coerce(model, k, v) for k, v in filters.items()}

    def _fields(self, model, record):
        fields = self._filters(model, record)
        if fields.get('id') is None:
            fields.pop('id', None)
        return fields

    def _lookup(self, model, id):
        try:
            obj = self.db.session.get(model, int(id))
        except (TypeError, ValueError):
            obj = None
        if obj is None:
            raise NotFound(f'{model.__tablename__} record {id} not found')
        return obj

    @contextmanager
    def _commit(self):
        try:
            yield
            self.db.session.commit()
        except IntegrityError as exc:
            self.db.session.rollback()
            raise ConstraintViolation(str(exc.orig)) from exc
        except SQLAlchemyError:
            self.db.session.rollback()
            raise

    def get(self, collection, **filters):
        model = self._model(collection)
        try:
            filters = self._filters(model, filters)
        except (TypeError, ValueError):
            # an id that can't be an integer matches nothing
            return []
        rows = model.query.filter_by(**filters).order_by(model.id).all()
        return [self._to_dict(r) for r in rows]

    def insert_many(self, collection, records):
        model = self._model(collection)
        objs = [model(**self._fields(model, r)) for r in records]
        with self._commit():
            self.db.session.add_all(objs)
        return [self._to_dict(o) for o in objs]

    def update(self, collection, id, partial):
        model = self._model(collection)
        obj = self._lookup(model, id)
        fields = self._filters(model, partial)
        fields.pop('id', None)
        with self._commit():
            for key, value in fields.items():
                setattr(obj, key, value)
        return self._to_dict(obj)

    def delete(self, collection, id):
        model = self._model(collection)
        obj = self._lookup(model, id)
        with self._commit():
            self.db.session.delete(obj)

    def delete_where(self, collection, **filters):
        model = self._model(collection)
        try:
            filters = self._filters(model, filters)
        except (TypeError, ValueError):
            return 0
        with self._commit():
            count = model.query.filter_by(**filters).delete(synchronize_session=False)
        return count


class LocalStorage(StorageAdapter):
    """
    Key-value backend: one JSON list per key, optionally persisted to a file.

    Keys are ``users``, ``products``, ``cart_<user_id>`` and
    ``purchases_<user_id>``; cart lines and purchases are scoped by owner.
    """

    SCOPED = {'cart_items': 'cart_', 'purchases': 'purchases_'}
    UNIQUE = {
        'users': [('email',)],
        'cart_items': [('user_id', 'product_id')],
    }
    DEFAULTS = {
        'users': {'created_at': utcnow},
        'products': {'created_at': utcnow, 'images': list},
        'cart_items': {'quantity': lambda: 1},
        'purchases': {'purchased_at': utcnow, 'quantity': lambda: 1},
    }
    DECIMAL_FIELDS = {'price'}
    DATETIME_FIELDS = {'created_at', 'purchased_at'}

    def __init__(self, blobs, path=None):
        super().__init__(blobs)
        self.path = path
        self._data = {}
        if path and os.path.exists(path):
            with open(path) as fh:
                self._data = json.load(fh)

    def _fields(self, collection):
        try:
            model = SQLAlchemyStorage.MODELS[collection]
        except KeyError:
            raise UnknownCollection(collection) from None
        return [c.name for c in model.__table__.columns]

    def _keys(self, collection, filters):
        prefix = self.SCOPED.get(collection)
        if prefix is None:
            return [collection]
        if filters.get('user_id') is not None:
            return [f"{prefix}{filters['user_id']}"]
        return [k for k in self._data if k.startswith(prefix)]

    def _key_for(self, collection, record):
        prefix = self.SCOPED.get(collection)
        if prefix is None:
            return collection
        if record.get('user_id') is None:
            raise ValueError(f'{collection} records need a user_id')
        return f"{prefix}{record['user_id']}"

    @staticmethod
    def _matches(record, filters):
        for key, value in filters.items():
            current = record.get(key)
            if current != value and not same_id(current, value):
                return False
        return True

    def _encode(self, record):
        encoded = {}
        for key, value in record.items():
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            encoded[key] = value
        return encoded

    def _decode(self, collection, stored):
        record = {name: None for name in self._fields(collection)}
        record.update(copy.deepcopy(stored))
        for key in self.DECIMAL_FIELDS & record.keys():
            if record[key] is not None:
                record[key] = Decimal(record[key])
        for key in self.DATETIME_FIELDS & record.keys():
            if record[key] is not None:
                record[key] = datetime.fromisoformat(record[key])
        return record

    def _find(self, collection, id):
        for key in self._keys(collection, {}):
            for index, stored in enumerate(self._data.get(key, [])):
                if same_id(stored.get('id'), id):
                    return key, index
        raise NotFound(f'{collection} record {id} not found')

    def _check_unique(self, collection, record, rows, skip_id=None):
        for columns in self.UNIQUE.get(collection, []):
            for other in rows:
                if skip_id is not None and same_id(other.get('id'), skip_id):
                    continue
                if all(same_id(other.get(c), record.get(c)) for c in columns):
                    raise ConstraintViolation(
                        f"{collection}: duplicate {', '.join(columns)}")

    def _all_rows(self, collection):
        rows = []
        for key in self._keys(collection, {}):
            rows.extend(self._data.get(key, []))
        return rows

    @contextmanager
    def _transaction(self):
        backup = copy.deepcopy(self._data)
        try:
            yield
            self._flush()
        except Exception:
            self._data = backup
            raise

    def _flush(self):
        if not self.path:
            return
        tmp = f'{self.path}.tmp'
        with open(tmp, 'w') as fh:
            json.dump(self._data, fh, indent=2)
        os.replace(tmp, self.path)

    def get(self, collection, **filters):
        self._fields(collection)
        rows = []
        for key in self._keys(collection, filters):
            rows.extend(self._decode(collection, r) for r in self._data.get(key, [])
                        if self._matches(r, filters))
        return rows

    def insert_many(self, collection, records):
        fields = set(self._fields(collection))
        created = []
        with self._transaction():
            for record in records:
                unknown = set(record) - fields
                if unknown:
                    raise ValueError(f'{collection} has no field(s) {sorted(unknown)}')
                record = dict(record)
                if record.get('id') is None:
                    record['id'] = uuid.uuid4().hex
                for name, default in self.DEFAULTS.get(collection, {}).items():
                    if record.get(name) is None:
                        record[name] = default()
                self._check_unique(collection, record, self._all_rows(collection))
                stored = self._encode(record)
                self._data.setdefault(self._key_for(collection, record), []).append(stored)
                created.append(stored)
        return [self._decode(collection, r) for r in created]

    def update(self, collection, id, partial):
        fields = set(self._fields(collection))
        key, index = self._find(collection, id)
        changes = {k: v for k, v in partial.items() if k != 'id'}
        owner = self._data[key][index].get('user_id')
        if collection in self.SCOPED and not same_id(changes.get('user_id', owner), owner):
            # the owner is part of the key
            raise ValueError(f'{collection} records cannot change owner')
        unknown = set(changes) - fields
        if unknown:
            raise ValueError(f'{collection} has no field(s) {sorted(unknown)}')
        with self._transaction():
            stored = self._data[key][index]
            merged = dict(self._decode(collection, stored), **changes)
            self._check_unique(collection, merged, self._all_rows(collection), skip_id=id)
            stored.update(self._encode(changes))
        return self._decode(collection, stored)

    def delete(self, collection, id):
        key, index = self._find(collection, id)
        with self._transaction():
            del self._data[key][index]

    def delete_where(self, collection, **filters):
        self._fields(collection)
        count = 0
        with self._transaction():
            for key in self._keys(collection, filters):
                rows = self._data.get(key, [])
                kept = [r for r in rows if not self._matches(r, filters)]
                count += len(rows) - len(kept)
                self._data[key] = kept
        return count
