"""
Security utilities for file upload validation and sanitization
"""
import re
from pathlib import Path
from typing import Optional
from fastapi import HTTPException, UploadFile


# Security constants
IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

VIDEO_MIME_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}

ALLOWED_EXTENSIONS = list(IMAGE_MIME_TYPES) + list(VIDEO_MIME_TYPES)

# 10MB for images; 25MB for videos, the transcription upload limit
MAX_IMAGE_SIZE = 10 * 1024 * 1024
MAX_VIDEO_SIZE = 25 * 1024 * 1024


def upload_error(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": "invalid_upload", "message": message})


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Removes:
    - Directory separators (/ and \\)
    - Path traversal sequences (..)
    - Null bytes (\\x00)
    - Any other potentially dangerous characters

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use in file paths
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    filename = filename.replace("\x00", "")
    filename = filename.replace("/", "").replace("\\", "")

    while ".." in filename:
        filename = filename.replace("..", "")

    # Keep letters, numbers, dots, hyphens, underscores and spaces
    filename = re.sub(r'[^a-zA-Z0-9._\-\s]', '', filename)
    filename = filename.strip('. ')

    if not filename:
        raise ValueError("Filename is invalid after sanitization")

    if len(filename) > 200:
        ext = Path(filename).suffix
        name_without_ext = Path(filename).stem[:200 - len(ext)]
        filename = name_without_ext + ext

    return filename


def get_file_extension(filename: str) -> str:
    """
    Extract file extension from filename (lowercase).

    Args:
        filename: Filename

    Returns:
        File extension with leading dot (e.g., ".png") or empty string
    """
    return Path(filename).suffix.lower()


def validate_file_extension(filename: str) -> None:
    ext = get_file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise upload_error(
            f"File extension '{ext}' is not allowed. Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}"
        )


def detect_mime_type_from_content(content: bytes) -> Optional[str]:
    """
    Detect MIME type from file content using magic bytes.

    Args:
        content: File content bytes

    Returns:
        Detected MIME type or None if unknown
    """
    if not content:
        return None

    if content[:3] == b'\xff\xd8\xff':
        return "image/jpeg"

    if content[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"

    if content[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"

    # WEBP: RIFF....WEBP
    if content[:4] == b'RIFF' and len(content) > 12 and content[8:12] == b'WEBP':
        return "image/webp"

    # ISO base media (mp4/mov): ....ftyp<brand>
    if len(content) > 12 and content[4:8] == b'ftyp':
        brand = content[8:12]
        if brand == b'qt  ':
            return "video/quicktime"
        return "video/mp4"

    # EBML header (webm/mkv)
    if content[:4] == b'\x1a\x45\xdf\xa3':
        return "video/webm"

    return None


def is_image_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("image/")


def is_video_mime(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith("video/")


def validate_file_content(content: bytes, filename: str) -> str:
    """
    Validate file content (type and size).

    Args:
        content: File content bytes
        filename: Sanitized filename for error messages

    Returns:
        Detected MIME type

    Raises:
        HTTPException: If validation fails
    """
    if len(content) == 0:
        raise upload_error("File is empty")

    detected_mime = detect_mime_type_from_content(content)
    if detected_mime is None:
        raise upload_error(f"Could not verify the file type of '{filename}'. Upload an image or a video.")

    limit = MAX_VIDEO_SIZE if is_video_mime(detected_mime) else MAX_IMAGE_SIZE
    if len(content) > limit:
        size_mb = len(content) / (1024 * 1024)
        max_mb = limit / (1024 * 1024)
        raise upload_error(f"File size ({size_mb:.2f}MB) exceeds maximum allowed size ({max_mb:.0f}MB)")

    # Extension and content must agree on image vs video
    ext = get_file_extension(filename)
    if is_video_mime(detected_mime) != (ext in VIDEO_MIME_TYPES):
        raise upload_error(f"File content does not match its extension '{ext}'")

    return detected_mime


async def validate_uploaded_file(file: UploadFile) -> tuple[str, bytes, str]:
    """
    Comprehensive validation of uploaded file.

    This function:
    1. Sanitizes the filename
    2. Validates file extension
    3. Reads and validates file content (size and magic bytes)

    Args:
        file: FastAPI UploadFile object

    Returns:
        Tuple of (sanitized_filename, file_content, mime_type)

    Raises:
        HTTPException: If any validation fails
    """
    if not file.filename:
        raise upload_error("Filename is required")

    try:
        sanitized_filename = sanitize_filename(file.filename)
    except ValueError as e:
        raise upload_error(str(e))

    validate_file_extension(sanitized_filename)

    content = await file.read()
    mime_type = validate_file_content(content, sanitized_filename)

    await file.seek(0)

    return sanitized_filename, content, mime_type


def validate_password_strength(password: str) -> None:
    """
    Validate password strength according to security requirements.

    Enforces:
    - Minimum length: 12 characters
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)
    - At least one special character (!@#$%^&*(),.?":{}|<>])

    Args:
        password: Password string to validate

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password:
        raise ValueError("Password cannot be empty")

    if len(password) < 12:
        raise ValueError("Password must be at least 12 characters long")

    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter (A-Z)")

    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter (a-z)")

    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit (0-9)")

    if not re.search(r'[!@#$%&*(),.?":{}|<>\[\]^]', password):
        raise ValueError("Password must contain at least one special character (!@#$%^&*(),.?\":{}|<>[])")
