import enum
import secrets
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, LargeBinary, String, Text

from qrhub.database import Base

DEFAULT_INSTRUCTIONS = "Welcome! Please connect to our WiFi network using the credentials below."


def utcnow() -> datetime:
    # Stored naive; every timestamp in the database is UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SecurityKind(str, enum.Enum):
    WPA = "WPA"
    WPA2 = "WPA2"
    WPA3 = "WPA3"
    WEP = "WEP"
    OPEN = "open"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    handle = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String(254), unique=True, index=True, nullable=False)
    password_hash = Column(String(128), nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked = Column(Boolean, nullable=False, default=False)
    lock_expires_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)


class ShortLink(Base):
    __tablename__ = "short_links"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("accounts.id"), index=True, nullable=False)
    code = Column(String(20), unique=True, index=True, nullable=False)
    title = Column(String(100), nullable=False)
    target_url = Column(String(2048), nullable=False)
    rendered_image = Column(LargeBinary, nullable=False)
    logo_path = Column(String(512), nullable=True)
    click_count = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Portal(Base):
    __tablename__ = "wifi_portals"

    id = Column(Integer, primary_key=True, index=True)
    portal_id = Column(String(16), unique=True, index=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("accounts.id"), index=True, nullable=False)
    title = Column(String(100), nullable=False)
    slug = Column(String(50), unique=True, index=True, nullable=False)
    network_name = Column(String(32), nullable=False)
    network_secret = Column(String(63), nullable=False, default="")
    security_kind = Column(String(8), nullable=False, default=SecurityKind.WPA2.value)
    instructions = Column(Text, nullable=False, default=DEFAULT_INSTRUCTIONS)
    rendered_image = Column(LargeBinary, nullable=False)
    visit_count = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


# ---- Factories: derived fields are filled in here, never on flush ----

def new_account(handle: str, email: str, password_hash: str) -> Account:
    return Account(
        handle=handle,
        email=email,
        password_hash=password_hash,
        failed_attempts=0,
        locked=False,
        created_at=utcnow(),
    )


def new_short_link(
    owner_id: int,
    code: str,
    title: str,
    target_url: str,
    rendered_image: bytes,
    logo_path: str | None = None,
) -> ShortLink:
    now = utcnow()
    return ShortLink(
        owner_id=owner_id,
        code=code,
        title=title,
        target_url=target_url,
        rendered_image=rendered_image,
        logo_path=logo_path,
        click_count=0,
        active=True,
        created_at=now,
        updated_at=now,
    )


def new_portal(
    owner_id: int,
    slug: str,
    title: str,
    network_name: str,
    network_secret: str | None,
    security_kind: SecurityKind,
    rendered_image: bytes,
    instructions: str | None = None,
) -> Portal:
    now = utcnow()
    return Portal(
        portal_id=secrets.token_hex(8),
        owner_id=owner_id,
        title=title,
        slug=slug,
        network_name=network_name,
        network_secret="" if security_kind is SecurityKind.OPEN else (network_secret or ""),
        security_kind=security_kind.value,
        instructions=instructions or DEFAULT_INSTRUCTIONS,
        rendered_image=rendered_image,
        visit_count=0,
        active=True,
        created_at=now,
        updated_at=now,
    )
