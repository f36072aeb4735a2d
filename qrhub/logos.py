import logging
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from qrhub.errors import InvalidFormat

logger = logging.getLogger("qrhub.logos")

ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


@dataclass(frozen=True)
class LogoUpload:
    filename: str
    content_type: str | None
    data: bytes


def check_upload(logo: LogoUpload, max_bytes: int) -> None:
    extension = Path(logo.filename or "").suffix.lower()
    if extension not in ALLOWED_EXTENSIONS or (logo.content_type or "").lower() not in ALLOWED_MIME_TYPES:
        raise InvalidFormat("Only image files (JPEG, PNG, GIF, WebP) are allowed!")
    if len(logo.data) > max_bytes:
        raise InvalidFormat(f"Logo must be at most {max_bytes // 1024} KB")
    if not logo.data:
        raise InvalidFormat("Logo file is empty")


def save_logo(upload_dir: Path, filename: str, data: bytes) -> str:
    upload_dir.mkdir(parents=True, exist_ok=True)
    stem = re.sub(r"[^a-zA-Z0-9]", "", Path(filename).stem)[:40]
    extension = Path(filename).suffix.lower()
    path = upload_dir / f"logo-{int(time.time() * 1000)}-{secrets.token_hex(4)}-{stem}{extension}"
    path.write_bytes(data)
    return str(path)


def delete_logo(logo_path: str | None) -> None:
    if not logo_path:
        return
    try:
        Path(logo_path).unlink()
        logger.info("Logo file deleted: %s", logo_path)
    except OSError as exc:
        logger.error("Failed to delete logo file: %s (%s)", logo_path, exc)
