"""
Image asset storage for catalog records.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from ..config import MEDIA_DIR, USER_AGENT
from ..error_handling import DuplicateDocument, handle_errors
from .operations import DocumentStore

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 100


def derive_filename(url: str) -> str:
    """
    Build a safe, stable filename from an image URL.

    Args:
        url: Source image URL

    Returns:
        Sanitized filename with an extension
    """
    filename = Path(urlparse(url).path).name or "image.jpg"
    if len(filename) > MAX_FILENAME_LENGTH:
        filename = filename[:90] + ".jpg"
    filename = re.sub(r"[^\w\d.-]", "_", filename)
    if "." not in filename:
        filename += ".jpg"
    return filename


def _mimetype(filename: str) -> str:
    extension = filename.rsplit(".", 1)[-1].lower()
    return f"image/{'jpeg' if extension == 'jpg' else extension}"


class AssetStore:
    """
    Downloads images and records them in the media collection.
    """

    def __init__(self, store: DocumentStore, media_dir: Path = MEDIA_DIR,
                 session: Optional[requests.Session] = None, timeout: float = 30.0):
        """
        Initialize the asset store.

        Args:
            store: Document store holding the media collection
            media_dir: Directory to save downloaded images
            session: requests session for downloads
            timeout: Download timeout in seconds
        """
        self.store = store
        self.media_dir = Path(media_dir)
        self.timeout = timeout
        self._cache: Dict[str, int] = {}

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    @handle_errors(default_return=None)
    def store_from_url(self, url: Optional[str], alt: Optional[str] = None) -> Optional[int]:
        """
        Download an image once and return its media id.

        Args:
            url: Source image URL
            alt: Alternative text for the image

        Returns:
            Media document id, or None if there is no URL or the download failed
        """
        if not url:
            return None
        if url in self._cache:
            logger.debug(f"Using cached image for {url}")
            return self._cache[url]

        filename = derive_filename(url)
        existing = self.store.find_one("media", {"name": {"equals": filename}})
        if existing:
            logger.info(f"Found existing media {existing['id']} for {filename}")
            self._cache[url] = existing["id"]
            return existing["id"]

        logger.info(f"Downloading image {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        content = response.content
        if not content:
            logger.warning(f"Image download returned empty content: {url}")
            return None

        self.media_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.media_dir / filename
        with open(file_path, "wb") as f:
            f.write(content)

        try:
            media = self.store.create("media", {
                "name": filename,
                "alt": alt or filename,
                "url": url,
                "path": str(file_path),
                "size": len(content),
                "mimetype": _mimetype(filename),
            })
        except DuplicateDocument:
            # Another worker stored the same file first
            media = self.store.find_one("media", {"name": {"equals": filename}})
            if media is None:
                raise
        self._cache[url] = media["id"]
        logger.info(f"Stored image {filename} as media {media['id']}")
        return media["id"]
