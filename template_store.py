"""
Template sources and the shared template cache.

Templates come from a local directory or from the S3 bucket, depending on
TEMPLATE_SOURCE. Loaded templates are immutable and kept in a small LRU cache
shared by all request threads.
"""

import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

import config
from errors import TemplateNotFound
from template_engine import Template, load_template

logger = logging.getLogger(__name__)

# =============================================================================
# S3 Configuration
# =============================================================================
s3_client = boto3.client(
    "s3",
    endpoint_url=config.S3_ENDPOINT,
    aws_access_key_id=config.S3_ACCESS_KEY,
    aws_secret_access_key=config.S3_SECRET_KEY,
    region_name=config.S3_REGION,
    config=Config(s3={'addressing_style': 'path'})
)


# =============================================================================
# Template sources
# =============================================================================
def download_template(template_key: str) -> bytes:
    try:
        response = s3_client.get_object(Bucket=config.S3_BUCKET, Key=template_key)
        return response['Body'].read()
    except (ClientError, BotoCoreError) as e:
        raise TemplateNotFound(template_key, str(e)) from e


def read_local_template(template_key: str, template_dir: Optional[Path] = None) -> bytes:
    root = Path(template_dir or config.TEMPLATE_DIR).resolve()
    path = (root / template_key).resolve()
    if root not in path.parents:
        raise TemplateNotFound(template_key, "path escapes the template directory")
    if not path.is_file():
        raise TemplateNotFound(template_key, f"no such file in {root}")
    return path.read_bytes()


def fetch_template_bytes(template_key: str) -> bytes:
    if config.TEMPLATE_SOURCE == "s3":
        return download_template(template_key)
    return read_local_template(template_key)


# =============================================================================
# Cache
# =============================================================================
class TemplateCache:
    """Bounded LRU of loaded templates. Entries are immutable so callers share them freely."""

    def __init__(self, max_size: int = 8):
        self.max_size = max(1, max_size)
        self._items: "OrderedDict[str, Template]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def get_or_load(self, key: str, loader: Callable[[str], bytes]) -> Template:
        with self._lock:
            template = self._items.get(key)
            if template is not None:
                self._items.move_to_end(key)
                return template

        # loading happens outside the lock; a concurrent miss for the same key just loads twice
        template = load_template(loader(key), key)

        with self._lock:
            self._items[key] = template
            self._items.move_to_end(key)
            while len(self._items) > self.max_size:
                evicted, _ = self._items.popitem(last=False)
                logger.debug("Evicted template %s from cache", evicted)
        return template

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


template_cache = TemplateCache(config.TEMPLATE_CACHE_SIZE)


def get_template(template_key: str) -> Template:
    return template_cache.get_or_load(template_key, fetch_template_bytes)
