"""Cleanup of images hosted on Cloudinary.

Uploads happen in the browser; the API only stores the returned URLs and
deletes images it no longer references.
"""

import logging
import os
from typing import Iterable, List, Optional

import cloudinary.uploader

logger = logging.getLogger(__name__)


def public_id_from_url(url: str) -> Optional[str]:
    """.../upload/w_300/v1712345678/phones/abc123.jpg -> phones/abc123"""
    if not url or "/upload/" not in url:
        return None
    parts = url.split("/upload/", 1)[1].split("/")
    for i, part in enumerate(parts):
        if part[:1] == "v" and part[1:].isdigit():
            parts = parts[i + 1:]
            break
    path = "/".join(parts)
    return path.rsplit(".", 1)[0] or None


class CloudinaryMedia:
    """Credentials come from CLOUDINARY_URL, which the SDK reads on import."""

    def __init__(self, enabled: Optional[bool] = None):
        if enabled is None:
            enabled = bool(os.getenv("CLOUDINARY_URL"))
        self.enabled = enabled

    def delete(self, urls: Iterable[str]) -> None:
        for url in urls:
            public_id = public_id_from_url(url)
            if not self.enabled or not public_id:
                logger.info("skipping media delete for %s", url)
                continue
            try:
                cloudinary.uploader.destroy(public_id)
            except Exception:
                logger.exception("failed to delete media %s", public_id)


class RecordingMedia:
    def __init__(self):
        self.deleted: List[str] = []

    def delete(self, urls: Iterable[str]) -> None:
        self.deleted.extend(urls)
