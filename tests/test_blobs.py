# File: tests/test_blobs.py

import os

import pytest

from ecofinds.blobs import LocalBlobStore, blob_path
from ecofinds.errors import NotFound, UploadFailed


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path), base_url='/uploads', max_size=16)


def test_store_returns_public_url(blobs, tmp_path):
    url = blobs.store('products/1/a.png', b'png')
    assert url == '/uploads/products/1/a.png'
    assert (tmp_path / 'products' / '1' / 'a.png').read_bytes() == b'png'
    assert blobs.path_for(url) == 'products/1/a.png'


def test_rejects_bad_extension_and_size(blobs):
    with pytest.raises(UploadFailed):
        blobs.store('products/1/a.exe', b'MZ')
    with pytest.raises(UploadFailed):
        blobs.store('products/1/big.jpg', b'x' * 17)


def test_remove(blobs, tmp_path):
    blobs.store('a.jpg', b'jpg')
    blobs.remove('a.jpg')
    assert not os.path.exists(tmp_path / 'a.jpg')
    with pytest.raises(NotFound):
        blobs.remove('a.jpg')


def test_external_urls_have_no_path(blobs):
    assert blobs.path_for('https://picsum.photos/seed/sofa/600/400') is None


def test_blob_path_sanitises_filename():
    path = blob_path('products/7', '../../etc/my photo.JPG')
    assert path.startswith('products/7/')
    assert '..' not in path
    assert path.endswith('-etc_my_photo.JPG')
