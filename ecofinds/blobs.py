# ecofinds/blobs.py
"""
Image blob storage.

Files are written under an upload folder and served back from a public URL
prefix, e.g. ``products/3/9f2c-sofa.jpg`` -> ``/uploads/products/3/9f2c-sofa.jpg``.
"""
import os
import uuid

from werkzeug.utils import safe_join, secure_filename

from .config import ALLOWED_EXTENSIONS, MAX_FILE_SIZE
from .errors import NotFound, UploadFailed


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def read_upload(upload):
    """Accept a werkzeug FileStorage or a ``(filename, bytes)`` pair."""
    if isinstance(upload, tuple):
        filename, data = upload
    else:
        filename, data = upload.filename, upload.read()
    return filename or '', data


def blob_path(prefix, filename):
    name = secure_filename(filename) or 'upload'
    return f'{prefix}/{uuid.uuid4().hex[:8]}-{name}'


class LocalBlobStore:

    def __init__(self, folder, base_url='/uploads', max_size=MAX_FILE_SIZE):
        self.folder = folder
        self.base_url = base_url.rstrip('/')
        self.max_size = max_size

    def _full_path(self, path):
        full = safe_join(self.folder, path)
        if full is None:
            raise UploadFailed(f'Invalid blob path: {path}')
        return full

    def store(self, path, data):
        if not allowed_file(path):
            raise UploadFailed(f'File type not allowed: {path}')
        if len(data) > self.max_size:
            raise UploadFailed(f'File too large: {path}')
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, 'wb') as fh:
                fh.write(data)
        except OSError as exc:
            raise UploadFailed(f'Could not store {path}: {exc}') from exc
        return f'{self.base_url}/{path}'

    def remove(self, path):
        full = safe_join(self.folder, path)
        if full is None or not os.path.isfile(full):
            raise NotFound(f'No such blob: {path}')
        os.remove(full)

    def path_for(self, url):
        # images hosted elsewhere (seeded demo listings) have no local path
        prefix = self.base_url + '/'
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]
