"""Image acquisition and base64 encoding for provider payloads."""

import base64
import io
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import (
    ConfigurationError,
    ImageDownloadError,
    ImageNotFoundError,
    ImageTooLargeError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_IMAGE_BYTES = 20 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "image/jpeg"

# Multiple of 3 so chunk outputs concatenate without padding in between
BASE64_CHUNK_SIZE = 3 * 4096

IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

THUMBNAIL_PREFIX = "thumb_"


def encode_base64(data: bytes, chunk_size: int = BASE64_CHUNK_SIZE) -> str:
    """Encode bytes to base64 in fixed-size chunks.

    The output is identical to a single-pass ``base64.b64encode`` of the same
    bytes; chunking only bounds the size of each intermediate buffer.

    Args:
        data: Raw bytes
        chunk_size: Bytes per chunk, must be a positive multiple of 3

    Returns:
        Base64 text
    """
    if chunk_size <= 0 or chunk_size % 3:
        raise ValueError(f"chunk_size must be a positive multiple of 3, got {chunk_size}")
    view = memoryview(data)
    return "".join(
        base64.b64encode(view[start:start + chunk_size]).decode("ascii")
        for start in range(0, len(view), chunk_size)
    )


def decode_base64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


class ImageRefKind(str, Enum):
    URL = "url"
    FILE_ID = "file_id"
    PATH = "path"


@dataclass(frozen=True)
class ImageRef:
    """Reference to an image: a remote URL, an uploaded file id or a local path."""

    kind: ImageRefKind
    value: str

    @classmethod
    def from_url(cls, url: str) -> "ImageRef":
        return cls(ImageRefKind.URL, url)

    @classmethod
    def from_file_id(cls, file_id: str) -> "ImageRef":
        return cls(ImageRefKind.FILE_ID, file_id)

    @classmethod
    def from_path(cls, path: "str | Path") -> "ImageRef":
        return cls(ImageRefKind.PATH, str(path))

    @classmethod
    def parse(cls, source: "str | Path") -> "ImageRef":
        """Classify a CLI-style source: http(s) URLs, otherwise a local path."""
        source_str = str(source)
        if source_str.startswith(("http://", "https://")):
            return cls.from_url(source_str)
        return cls.from_path(source_str)

    @property
    def is_remote(self) -> bool:
        return self.kind is ImageRefKind.URL

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ImageData:
    """Acquired image bytes plus their media type."""

    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def to_base64(self) -> str:
        return encode_base64(self.data)

    def to_data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.to_base64()}"


def parse_content_type(header: Optional[str]) -> str:
    """Media type from a Content-Type header, parameters stripped."""
    if not header:
        return DEFAULT_CONTENT_TYPE
    media_type = header.split(";", 1)[0].strip().lower()
    return media_type or DEFAULT_CONTENT_TYPE


class ImageAcquirer:
    """Loads images from URLs, uploaded file ids and local paths.

    Every source is held to the same size ceiling. Remote downloads are
    streamed so an oversized body is abandoned as soon as it crosses the limit.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        uploads_dir: Optional[Path] = None,
    ):
        """Initialize the acquirer.

        Args:
            http_client: Shared async HTTP client
            max_bytes: Size ceiling for any single image
            uploads_dir: Directory holding uploaded files, for file-id references
        """
        self._http = http_client
        self.max_bytes = max_bytes
        self.uploads_dir = Path(uploads_dir) if uploads_dir else None

    async def load(self, ref: ImageRef) -> ImageData:
        """Acquire the bytes behind any image reference."""
        if ref.kind is ImageRefKind.URL:
            return await self.fetch_image(ref.value)
        if ref.kind is ImageRefKind.FILE_ID:
            return self.read_file(self.resolve_file_id(ref.value))
        return self.read_file(Path(ref.value))

    async def fetch_image(self, url: str) -> ImageData:
        """Download an image over HTTP.

        Args:
            url: Image URL

        Returns:
            Image bytes and content type (``image/jpeg`` when the header is absent)

        Raises:
            ImageDownloadError: Transport failure or non-success status
            ImageTooLargeError: Declared or streamed size exceeds the ceiling
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ImageDownloadError(f"Invalid image URL: {url}")

        try:
            async with self._http.stream("GET", url, follow_redirects=True) as response:
                if not response.is_success:
                    raise ImageDownloadError(
                        f"Failed to download image: HTTP {response.status_code}"
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise ImageTooLargeError(int(declared), self.max_bytes)

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self.max_bytes:
                        raise ImageTooLargeError(len(buffer), self.max_bytes)

                content_type = parse_content_type(response.headers.get("content-type"))
        except httpx.TransportError as e:
            raise ImageDownloadError(f"Failed to download image: {e}") from e

        logger.debug(f"Downloaded {len(buffer):,} bytes ({content_type}) from {parsed.netloc}")
        return ImageData(data=bytes(buffer), content_type=content_type)

    def resolve_file_id(self, file_id: str) -> Path:
        """Find an uploaded file whose name starts with ``file_id``.

        Thumbnails are skipped. Ids containing path separators are rejected.
        """
        if not self.uploads_dir:
            raise ImageNotFoundError("No uploads directory configured for file ids")
        if not file_id or "/" in file_id or "\\" in file_id or file_id.startswith("."):
            raise ImageNotFoundError(f"Invalid file id: {file_id!r}")
        if not self.uploads_dir.is_dir():
            raise ImageNotFoundError(f"Uploads directory not found: {self.uploads_dir}")

        for candidate in sorted(self.uploads_dir.iterdir()):
            if (
                candidate.is_file()
                and candidate.name.startswith(file_id)
                and not candidate.name.startswith(THUMBNAIL_PREFIX)
            ):
                return candidate
        raise ImageNotFoundError(f"No uploaded image for file id {file_id!r}")

    def read_file(self, file_path: Path) -> ImageData:
        """Read a local image after checking its size."""
        path = Path(file_path).expanduser()

        if not path.exists():
            raise ImageNotFoundError(f"Image not found: {file_path}")
        if not path.is_file():
            raise ImageNotFoundError(f"Not a file: {file_path}")

        size = path.stat().st_size
        if size > self.max_bytes:
            raise ImageTooLargeError(size, self.max_bytes)

        data = path.read_bytes()
        content_type = detect_content_type(data, path.suffix)
        logger.debug(f"Read {path.name} ({size:,} bytes, {content_type})")
        return ImageData(data=data, content_type=content_type)

    def store_upload(self, file_path: Path) -> str:
        """Copy a local image into the uploads directory.

        Args:
            file_path: Image to store

        Returns:
            File id usable with ``ImageRef.from_file_id``
        """
        if not self.uploads_dir:
            raise ConfigurationError("No uploads directory configured")

        path = Path(file_path).expanduser()
        suffix = path.suffix.lower()
        if suffix not in IMAGE_MEDIA_TYPES:
            raise ConfigurationError(
                f"Unsupported image format: {path.name}. "
                f"Supported: {', '.join(sorted(IMAGE_MEDIA_TYPES))}"
            )

        image = self.read_file(path)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        file_id = f"{uuid.uuid4()}-{int(time.time() * 1000)}"
        target = self.uploads_dir / f"{file_id}{suffix}"
        target.write_bytes(image.data)

        logger.info(f"Stored upload: {path.name} -> {target.name}")
        return file_id


def detect_content_type(data: bytes, suffix: str = "") -> str:
    """Media type from the file extension, then from Pillow, then the default."""
    media_type = IMAGE_MEDIA_TYPES.get(suffix.lower())
    if media_type:
        return media_type
    try:
        with Image.open(io.BytesIO(data)) as img:
            sniffed = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        sniffed = None
    return sniffed or DEFAULT_CONTENT_TYPE
