"""
Image Handling Module
Loads uploaded images, checks their encoding and prepares a cleaner
working copy for the vision model.
"""

import base64
import io
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image, ImageFilter, ImageOps

from .errors import ImageDecodeError, PreprocessingError


# Encodings the vision model accepts (Pillow format names -> MIME types)
SUPPORTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}

_DATA_URI_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


@dataclass(frozen=True, eq=False)
class ImageReference:
    """
    Opaque handle to one uploaded (or derived) image.

    Equality is identity: two uploads of the same bytes are still two
    different references, which is what stale-result rejection relies on.
    """
    data: bytes
    mime_type: str = "application/octet-stream"
    name: str = ""
    ref_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_path(cls, path: str | Path) -> "ImageReference":
        path = Path(path)
        mime_type = {
            ".png": "image/png",
            ".jpg": "image/jpeg",
            ".jpeg": "image/jpeg",
            ".webp": "image/webp",
        }.get(path.suffix.lower(), "application/octet-stream")
        return cls(data=path.read_bytes(), mime_type=mime_type, name=path.name)

    @classmethod
    def from_data_uri(cls, data_uri: str, name: str = "") -> "ImageReference":
        """Build a reference from 'data:<mime>;base64,<data>'. Bad URIs give empty data."""
        match = _DATA_URI_RE.match(data_uri.strip())
        if not match:
            return cls(data=b"", name=name)
        try:
            data = base64.b64decode(match.group("data"), validate=True)
        except ValueError:
            data = b""
        return cls(data=data, mime_type=match.group("mime"), name=name)

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    def to_part(self) -> dict:
        """Inline image part for a Gemini request."""
        return {"mime_type": self.mime_type, "data": self.data}


def detect_format(data: bytes) -> str:
    """
    Return the MIME type of ``data`` if it decodes to a supported image.

    Raises:
        ImageDecodeError: if the bytes are empty, corrupt or an
            unsupported encoding.
    """
    if not data:
        raise ImageDecodeError("Image payload is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img_format = img.format
            img.verify()
    except Exception as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e

    if img_format not in SUPPORTED_FORMATS:
        raise ImageDecodeError(f"Unsupported image encoding: {img_format}")

    return SUPPORTED_FORMATS[img_format]


class ImagePreprocessor:
    """
    Produces a high-contrast grayscale working copy for OCR.

    Steps: grayscale, light denoise, autocontrast, downscale so the
    longest side fits ``max_dimension``. Output is always PNG.
    """

    def __init__(self, max_dimension: int = 2048, denoise: bool = True):
        self.max_dimension = max_dimension
        self.denoise = denoise

    def preprocess(self, image: ImageReference) -> ImageReference:
        try:
            with Image.open(io.BytesIO(image.data)) as img:
                img = ImageOps.exif_transpose(img)
                working = ImageOps.grayscale(img)
                if self.denoise:
                    working = working.filter(ImageFilter.MedianFilter(size=3))
                working = ImageOps.autocontrast(working, cutoff=1)
                working.thumbnail((self.max_dimension, self.max_dimension))

                buffer = io.BytesIO()
                working.save(buffer, format="PNG")
        except Exception as e:
            raise PreprocessingError(f"Preprocessing failed: {e}") from e

        stem = Path(image.name).stem if image.name else "image"
        return ImageReference(
            data=buffer.getvalue(),
            mime_type="image/png",
            name=f"{stem}_working.png",
        )
