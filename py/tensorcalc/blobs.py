"""
Content-addressed blob access for model weights.

Blobs are keyed by hash. Downloads land in a temp file next to the
destination and are renamed into place, so a partial file is never visible.
The tensor engine does not use this module; callers fetch weights here and
register them as inline tensors.
"""

import logging
import os
import pathlib
import shutil
import tempfile
import time
from dataclasses import dataclass
from urllib.parse import urljoin

import requests

from .errors import BlobNotFoundError, InvalidArgumentError, UnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobInfo:
    hash: str

    def __post_init__(self):
        if not self.hash or '/' in self.hash or self.hash in ('.', '..'):
            raise InvalidArgumentError(f'invalid blob hash {self.hash!r}')


class BlobReader:
    def download(self, info, dest_path):
        """Write the blob to ``dest_path``; BlobNotFoundError if absent."""
        raise NotImplementedError


class BlobStore(BlobReader):
    def upload(self, source_path, info):
        """Store ``source_path`` under ``info.hash``; no-op if already present."""
        raise NotImplementedError


def _write_atomic(dest_path, write):
    """Call ``write(fileobj)`` on a temp file, then rename it to ``dest_path``."""
    dest_path = pathlib.Path(dest_path)
    fd, tmp = tempfile.mkstemp(dir=dest_path.parent, prefix='download')
    try:
        with os.fdopen(fd, 'wb') as f:
            n = write(f)
        os.replace(tmp, dest_path)
    except BaseException:
        try:
            os.remove(tmp)
        except OSError as e:
            logger.error('removing temp file %s: %s', tmp, e)
        raise
    return n


class FileBlobStore(BlobStore):
    """Blob store backed by a local directory, one file per hash."""

    def __init__(self, root):
        self.root = pathlib.Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, info):
        return self.root / info.hash

    def download(self, info, dest_path):
        src = self.path(info)
        if not src.exists():
            raise BlobNotFoundError(f'blob {info.hash} not found', {'root': self.root})
        started = time.perf_counter()
        with open(src, 'rb') as r:
            n = _write_atomic(dest_path, lambda f: _copy(r, f))
        logger.info('copied blob %s to %s (%d bytes, %.1f ms)', info.hash, dest_path, n,
                    (time.perf_counter() - started) * 1e3)

    def upload(self, source_path, info):
        dest = self.path(info)
        if dest.exists():
            logger.info('blob %s already exists', info.hash)
            return
        with open(source_path, 'rb') as r:
            n = _write_atomic(dest, lambda f: _copy(r, f))
        logger.info('uploaded blob %s from %s (%d bytes)', info.hash, source_path, n)


class HTTPBlobReader(BlobReader):
    """Reads blobs from a blob server at ``base_url/<hash>``."""

    def __init__(self, base_url, timeout=60.0, session=None):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = timeout
        self.session = session or requests.Session()

    def download(self, info, dest_path):
        url = urljoin(self.base_url, info.hash)
        logger.info('downloading from url %s', url)
        started = time.perf_counter()
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise UnavailableError(f'downloading from {url}: {e}')
        with resp:
            if resp.status_code == 404:
                raise BlobNotFoundError(f'blob {info.hash} not found', {'url': url})
            if resp.status_code != 200:
                raise UnavailableError(
                    f'unexpected status downloading from upstream source: {resp.status_code}',
                    {'url': url})
            try:
                n = _write_atomic(dest_path, lambda f: _copy_chunks(resp, f))
            except requests.RequestException as e:
                raise UnavailableError(f'downloading from {url}: {e}')
        logger.info('downloaded blob %s (%d bytes, %.1f ms)', url, n,
                    (time.perf_counter() - started) * 1e3)


def _copy(r, w):
    shutil.copyfileobj(r, w)
    return w.tell()


def _copy_chunks(resp, w):
    n = 0
    for chunk in resp.iter_content(chunk_size=1 << 20):
        w.write(chunk)
        n += len(chunk)
    return n
