"""
Read-only image storage.

An image reference is a path relative to the store's base directory (or an
absolute path). A missing image is a fatal input error and is never retried.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from card_valuation.config import IMAGE_STORE_DIR
from card_valuation.errors import ImageNotFoundError

logger = logging.getLogger(__name__)


class BaseImageStore(ABC):
    """Abstract object-storage reader."""

    @abstractmethod
    def get_image_bytes(self, ref: str) -> bytes:
        """
        Fetch raw image bytes.

        Raises:
            ImageNotFoundError: the reference does not resolve to an image
        """
        pass


class LocalImageStore(BaseImageStore):
    """Image store backed by a local directory."""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir is not None else IMAGE_STORE_DIR

    def resolve(self, ref: str) -> Path:
        path = Path(ref)
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def get_image_bytes(self, ref: str) -> bytes:
        if not ref:
            raise ImageNotFoundError(ref)
        path = self.resolve(ref)
        if not path.is_file():
            raise ImageNotFoundError(ref)
        data = path.read_bytes()
        logger.debug(f"Read {len(data)} bytes from {path}")
        return data
