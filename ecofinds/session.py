# ecofinds/session.py
"""
Who is signed in.

The session pointer (the signed-in user's id) lives in a mapping handed in by
the caller: Flask's ``session`` in the web app, a plain dict anywhere else.
Stores that keep user-scoped state subscribe to transitions so they re-fetch
on sign-in and clear on sign-out.
"""
import logging
import re

from werkzeug.security import check_password_hash, generate_password_hash

from .blobs import blob_path, read_upload
from .config import GENDERS
from .errors import (AlreadyExists, AuthorizationError, ConstraintViolation,
                     InvalidCredentials, NotFound, ValidationError)
from .storage import same_id

log = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"[^@]+@[^@]+\.[^@]+")

# avatar_url is only ever set by an upload
PROFILE_FIELDS = ('username', 'email', 'bio', 'gender', 'address')
STRIPPED_FIELDS = ('id', 'password_hash')


def public_profile(user):
    return {k: v for k, v in user.items() if k != 'password_hash'}


def normalize_email(email):
    email = (email or '').strip().lower()
    if not EMAIL_REGEX.match(email):
        raise ValidationError('Invalid email format.')
    return email


class SessionHolder:
    SESSION_KEY = 'user_id'

    def __init__(self, storage, state=None):
        self.storage = storage
        self.state = state if state is not None else {}
        self._listeners = []

    def subscribe(self, listener):
        """Call ``listener(profile_or_None)`` on every sign-in and sign-out."""
        self._listeners.append(listener)
        return listener

    def _transition(self, profile):
        if profile is None:
            self.state.pop(self.SESSION_KEY, None)
        else:
            self.state[self.SESSION_KEY] = profile['id']
        for listener in self._listeners:
            listener(profile)

    @property
    def current_user_id(self):
        return self.state.get(self.SESSION_KEY)

    @property
    def current_user(self):
        user_id = self.current_user_id
        if user_id is None:
            return None
        rows = self.storage.get('users', id=user_id)
        if not rows:
            # pointer to a user that no longer exists
            self.state.pop(self.SESSION_KEY, None)
            return None
        return public_profile(rows[0])

    @property
    def signed_in(self):
        return self.current_user is not None

    def require_user(self):
        user = self.current_user
        if user is None:
            raise AuthorizationError('Please login first.')
        return user

    def register(self, username, email, password):
        username = (username or '').strip()
        if not username or not email or not password:
            raise ValidationError('All fields are required.')
        email = normalize_email(email)
        if self.storage.get('users', email=email):
            raise AlreadyExists('Email already registered.')
        try:
            user = self.storage.insert('users', {
                'username': username,
                'email': email,
                'password_hash': generate_password_hash(password),
            })
        except ConstraintViolation as exc:
            raise AlreadyExists('Email already registered.') from exc
        profile = public_profile(user)
        log.info('registered user %s', profile['id'])
        self._transition(profile)
        return profile

    def login(self, email, password):
        email = (email or '').strip().lower()
        rows = self.storage.get('users', email=email) if email else []
        if not rows or not check_password_hash(rows[0]['password_hash'], password or ''):
            raise InvalidCredentials('Invalid credentials.')
        profile = public_profile(rows[0])
        log.info('user %s signed in', profile['id'])
        self._transition(profile)
        return profile

    def logout(self):
        user_id = self.current_user_id
        self._transition(None)
        if user_id is not None:
            log.info('user %s signed out', user_id)

    def _clean_profile(self, user_id, partial):
        changes = {k: v for k, v in partial.items() if k not in STRIPPED_FIELDS}
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile field(s): {', '.join(sorted(unknown))}")
        if 'username' in changes:
            changes['username'] = (changes['username'] or '').strip()
            if not changes['username']:
                raise ValidationError('Username cannot be empty')
        if 'email' in changes:
            changes['email'] = normalize_email(changes['email'])
            taken = self.storage.get('users', email=changes['email'])
            if any(not same_id(u['id'], user_id) for u in taken):
                raise AlreadyExists('Email already registered.')
        if 'gender' in changes:
            if not changes['gender']:
                changes['gender'] = None
            elif changes['gender'] not in GENDERS:
                raise ValidationError(f"Gender must be one of: {', '.join(GENDERS)}")
        return changes

    def update_profile(self, partial, avatar=None):
        """
        Merge ``partial`` into the signed-in user's profile.

        Text fields are saved before the avatar is uploaded, so an
        ``UploadFailed`` from the avatar leaves the other changes in place.
        """
        user = self.require_user()
        changes = self._clean_profile(user['id'], partial)
        if changes:
            try:
                user = public_profile(self.storage.update('users', user['id'], changes))
            except ConstraintViolation as exc:
                raise AlreadyExists('Email already registered.') from exc
        if avatar is not None:
            user = self._replace_avatar(user, avatar)
        return user

    def _replace_avatar(self, user, avatar):
        filename, data = read_upload(avatar)
        url = self.storage.store_blob(blob_path(f"avatars/{user['id']}", filename), data)
        previous = user.get('avatar_url')
        user = public_profile(self.storage.update('users', user['id'], {'avatar_url': url}))
        old_path = self.storage.path_for(previous) if previous else None
        if old_path and old_path.startswith(f"avatars/{user['id']}/"):
            try:
                self.storage.remove_blob(old_path)
            except (NotFound, OSError) as exc:
                log.warning('could not remove old avatar %s: %s', previous, exc)
        return user
