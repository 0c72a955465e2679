import base64
import hashlib
import io
import uuid
import structlog

from PIL import Image, UnidentifiedImageError

from memetrace.models.media import MediaPayload

logger = structlog.get_logger()

def new_media_id() -> str:
    """Generate a new unique media ID."""
    return str(uuid.uuid4())

def encode_media(content: bytes, mime_type: str) -> MediaPayload:
    """Base64-encode uploaded bytes for transport to the inference model."""
    return MediaPayload(
        data=base64.b64encode(content).decode("ascii"),
        mime_type=mime_type,
    )

def calculate_content_hash(content: bytes, algorithm: str = "sha256") -> str:
    """Calculate hash of uploaded content, used to correlate log lines for the same file."""
    hash_obj = hashlib.new(algorithm)
    hash_obj.update(content)
    return hash_obj.hexdigest()

def inspect_image(content: bytes) -> dict:
    """
    Check that the bytes decode as an image and report its properties.

    Raises:
        ValueError: the content is not a decodable image
    """
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
        # verify() leaves the image unusable, reopen for the properties
        with Image.open(io.BytesIO(content)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "format": img.format,
                "mode": img.mode
            }
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.warning("Uploaded content is not a valid image", error=str(e))
        raise ValueError(f"Content is not a valid image: {str(e)}") from e

def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB"]
    i = 0
    size = float(size_bytes)
    while size >= 1024 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {size_names[i]}"
