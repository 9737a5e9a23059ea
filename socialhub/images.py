"""Storage of uploaded images.

Uploads are fitted inside a bounding box, re-encoded as WebP and written
under `upload_dir` with a random name. Posts and users only keep the
returned `/assets/<name>` reference.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, List, Optional

from PIL import Image, UnidentifiedImageError

from .constants import ASSETS_URL_PREFIX, IMAGE_OUTPUT_EXTENSION, IMAGE_OUTPUT_FORMAT
from .errors import ValidationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    filename: str
    content_type: Optional[str]
    data: bytes


class ImageStore:
    def __init__(self, upload_dir: str, url_prefix: str = ASSETS_URL_PREFIX, max_dimension: int = 1200,
                 quality: int = 80, max_bytes: int = 5 * 1024 * 1024):
        self.upload_dir = upload_dir
        self.url_prefix = url_prefix.rstrip('/')
        self.max_dimension = max_dimension
        self.quality = quality
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings) -> "ImageStore":
        return cls(
            settings.upload_dir,
            max_dimension=settings.image_max_dimension,
            quality=settings.image_quality,
            max_bytes=settings.max_upload_bytes,
        )

    def _check(self, upload: Upload) -> None:
        if not (upload.content_type or '').lower().startswith('image/'):
            raise ValidationFailed("Not an image! Please upload an image.")
        if len(upload.data) > self.max_bytes:
            raise ValidationFailed(f"Image exceeds the {self.max_bytes // (1024 * 1024)}MB limit")
        if not upload.data:
            raise ValidationFailed("Uploaded image is empty")

    def _normalize(self, data: bytes) -> bytes:
        try:
            img = Image.open(BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.info("Rejected undecodable upload: %s", e)
            raise ValidationFailed("Uploaded file is not a valid image") from None

        # thumbnail() only ever shrinks, so small images keep their size
        img.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)
        if img.mode not in ('RGB', 'RGBA'):
            img = img.convert('RGBA' if 'A' in img.getbands() or img.mode == 'P' else 'RGB')

        with BytesIO() as bio:
            img.save(bio, format=IMAGE_OUTPUT_FORMAT, quality=self.quality)
            return bio.getvalue()

    def save(self, upload: Upload) -> str:
        self._check(upload)
        encoded = self._normalize(upload.data)
        name = f"{uuid.uuid4()}.{IMAGE_OUTPUT_EXTENSION}"
        os.makedirs(self.upload_dir, exist_ok=True)
        with open(os.path.join(self.upload_dir, name), 'wb') as f:
            f.write(encoded)
        logger.debug("Stored upload %s as %s (%d -> %d bytes)", upload.filename, name, len(upload.data), len(encoded))
        return f"{self.url_prefix}/{name}"

    def save_all(self, uploads: Iterable[Upload]) -> List[str]:
        """Store every upload or none of them."""
        uploads = list(uploads)
        for u in uploads:
            self._check(u)
        refs: List[str] = []
        try:
            for u in uploads:
                refs.append(self.save(u))
        except Exception:
            self.delete(refs)
            raise
        return refs

    def path_for(self, reference: str) -> Optional[str]:
        """Filesystem path of a reference this store owns, else None."""
        prefix = self.url_prefix + '/'
        if not reference or not reference.startswith(prefix):
            return None
        name = reference[len(prefix):]
        if not name or '/' in name or '\\' in name or name.startswith('.'):
            return None
        return os.path.join(self.upload_dir, name)

    def delete(self, references: Iterable[str]) -> int:
        """Remove stored files; foreign URLs are ignored. Returns files removed."""
        removed = 0
        for ref in references:
            path = self.path_for(ref)
            if path is None:
                continue
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                logger.debug("Image already gone: %s", path)
            except OSError as e:
                logger.warning("Failed to remove image %s: %s", path, e)
        return removed
