import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from qrhub import hits, logos, models, qr_utils
from qrhub.allocator import LINK_CODE, PORTAL_SLUG, allocate, is_available
from qrhub.config import Settings
from qrhub.errors import BlockedRedirect, Conflict, InvalidFormat, NotFound, StorageUnavailable, ValidationFailed
from qrhub.lockout import hash_password
from qrhub.url_guard import validate_redirect_target
from qrhub.validation import (
    REGISTRATION_RULES,
    ensure_valid,
    portal_rules,
    portal_update_rules,
    short_link_rules,
    short_link_update_rules,
)

logger = logging.getLogger("qrhub.crud")


def _read(db: Session, query):
    """Run an idempotent read, retrying once if the connection dropped."""
    try:
        return query()
    except OperationalError:
        db.rollback()
        logger.warning("Read failed, retrying once", exc_info=True)
    try:
        return query()
    except OperationalError as exc:
        db.rollback()
        logger.error("Read failed twice: %s", exc)
        raise StorageUnavailable() from exc


def _strip(value: str | None) -> str | None:
    return value.strip() if isinstance(value, str) else value


# ---------- Accounts ----------

def register_account(db: Session, settings: Settings, handle: str, email: str, password: str) -> models.Account:
    handle = _strip(handle)
    email = (_strip(email) or "").lower()
    ensure_valid(REGISTRATION_RULES, {"handle": handle, "password": password})

    taken = _read(db, lambda: db.query(models.Account.id).filter(
        (models.Account.handle == handle) | (models.Account.email == email)
    ).first())
    if taken:
        raise Conflict("User with this email or username already exists")

    account = models.new_account(handle, email, hash_password(password, settings.bcrypt_rounds))
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("User with this email or username already exists")
    db.refresh(account)
    logger.info("Registered account id=%s handle=%s", account.id, handle)
    return account


def find_account_id(db: Session, login: str) -> int | None:
    login = (login or "").strip()
    row = _read(db, lambda: db.query(models.Account.id).filter(
        (models.Account.handle == login) | (models.Account.email == login.lower())
    ).first())
    return row[0] if row else None


def get_account(db: Session, account_id: int) -> models.Account | None:
    return _read(db, lambda: db.get(models.Account, account_id))


# ---------- Short links ----------

def _logo_for(settings: Settings, logo: logos.LogoUpload | None) -> str | None:
    if logo is None:
        return None
    logos.check_upload(logo, settings.max_logo_bytes)
    return logos.save_logo(settings.upload_dir, logo.filename, logo.data)


def create_short_link(
    db: Session,
    settings: Settings,
    owner_id: int,
    title: str,
    target_url: str,
    logo: logos.LogoUpload | None = None,
    candidate_code: str | None = None,
) -> models.ShortLink:
    ensure_valid(
        short_link_rules(settings.production),
        {"title": title, "target_url": _strip(target_url), "custom_code": candidate_code},
    )
    title, target_url = title.strip(), target_url.strip()

    logo_path = _logo_for(settings, logo)
    logo_bytes = logo.data if logo else None

    def build(code: str) -> models.ShortLink:
        image = qr_utils.render(settings.link_url(code), logo_bytes)
        return models.new_short_link(owner_id, code, title, target_url, image, logo_path)

    try:
        link = allocate(
            db, models.ShortLink.code, LINK_CODE, build,
            candidate=candidate_code, attempts=settings.code_allocation_attempts,
        )
    except Exception:
        # Nothing references the uploaded file yet
        logos.delete_logo(logo_path)
        raise
    logger.info("Created link code=%s target=%s owner=%s", link.code, target_url, owner_id)
    return link


def check_code_availability(db: Session, code: str) -> tuple[bool, str]:
    try:
        code = LINK_CODE.check(code)
    except InvalidFormat as exc:
        return False, exc.detail
    available = _read(db, lambda: is_available(db, models.ShortLink.code, code))
    return available, "This short ID is available" if available else "This short ID is already taken"


def resolve_short_link(db: Session, settings: Settings, code: str) -> str:
    """Return the redirect target for ``code`` and count the click."""
    link = _read(db, lambda: db.query(models.ShortLink).filter_by(code=code, active=True).first())
    if not link:
        raise NotFound("QR Code not found or inactive")

    target_url = link.target_url
    verdict = validate_redirect_target(target_url, settings.production)
    if not verdict:
        logger.warning(
            "Blocked redirect: code=%s target=%s reason=%s", code, target_url, verdict.reason.value
        )
        raise BlockedRedirect(verdict.reason.value)

    hits.record_hit(db, models.ShortLink.click_count, link.id, atomic=settings.hit_counter_atomic)
    return target_url


def list_short_links(db: Session, owner_id: int) -> list[models.ShortLink]:
    return _read(db, lambda: (
        db.query(models.ShortLink)
        .filter_by(owner_id=owner_id)
        .order_by(models.ShortLink.created_at.desc(), models.ShortLink.id.desc())
        .all()
    ))


def get_short_link(db: Session, owner_id: int, link_id: int) -> models.ShortLink:
    link = _read(db, lambda: db.query(models.ShortLink).filter_by(id=link_id, owner_id=owner_id).first())
    if not link:
        raise NotFound("QR Code not found")
    return link


def update_short_link(
    db: Session,
    settings: Settings,
    owner_id: int,
    link_id: int,
    title: str | None = None,
    target_url: str | None = None,
    active: bool | None = None,
    logo: logos.LogoUpload | None = None,
) -> models.ShortLink:
    ensure_valid(
        short_link_update_rules(settings.production),
        {"title": title, "target_url": _strip(target_url)},
    )
    link = get_short_link(db, owner_id, link_id)

    old_logo = new_logo = None
    if logo is not None:
        old_logo = link.logo_path
        new_logo = link.logo_path = _logo_for(settings, logo)
        # The logo is part of the rendered payload
        link.rendered_image = qr_utils.render(settings.link_url(link.code), logo.data)

    if title is not None:
        link.title = title.strip()
    if target_url is not None:
        link.target_url = target_url.strip()
    if active is not None:
        link.active = active

    link.updated_at = models.utcnow()
    try:
        db.commit()
    except Exception:
        db.rollback()
        logos.delete_logo(new_logo)
        raise
    db.refresh(link)
    logos.delete_logo(old_logo)
    logger.info("Updated link code=%s owner=%s", link.code, owner_id)
    return link


def delete_short_link(db: Session, owner_id: int, link_id: int) -> None:
    link = get_short_link(db, owner_id, link_id)
    code, logo_path = link.code, link.logo_path
    db.delete(link)
    db.commit()
    logos.delete_logo(logo_path)
    logger.info("Deleted link code=%s owner=%s", code, owner_id)


# ---------- WiFi portals ----------

def create_portal(
    db: Session,
    settings: Settings,
    owner_id: int,
    title: str,
    slug: str,
    network_name: str,
    network_secret: str | None = None,
    security_kind: str | None = None,
    instructions: str | None = None,
) -> models.Portal:
    slug = PORTAL_SLUG.normalize(slug) if isinstance(slug, str) else slug
    security_kind = security_kind or models.SecurityKind.WPA2.value
    ensure_valid(portal_rules(), {
        "title": title,
        "slug": slug,
        "network_name": network_name,
        "network_secret": network_secret,
        "security_kind": security_kind,
        "instructions": instructions,
    })
    kind = models.SecurityKind(security_kind)

    def build(code: str) -> models.Portal:
        return models.new_portal(
            owner_id, code, title.strip(), network_name.strip(), network_secret, kind,
            qr_utils.render(settings.portal_url(code)), _strip(instructions),
        )

    portal = allocate(
        db, models.Portal.slug, PORTAL_SLUG, build,
        candidate=slug, attempts=settings.code_allocation_attempts,
    )
    logger.info("Created portal slug=%s owner=%s", portal.slug, owner_id)
    return portal


def check_slug_availability(db: Session, slug: str) -> tuple[bool, str]:
    try:
        slug = PORTAL_SLUG.check(slug)
    except InvalidFormat as exc:
        return False, exc.detail
    available = _read(db, lambda: is_available(db, models.Portal.slug, slug))
    return available, "This slug is available" if available else "This slug is already taken"


def resolve_portal_public(db: Session, settings: Settings, slug: str) -> dict:
    """Public view of an active portal; counts the visit."""
    slug = PORTAL_SLUG.normalize(slug)
    portal = _read(db, lambda: db.query(models.Portal).filter_by(slug=slug, active=True).first())
    if not portal:
        raise NotFound("Portal not found or inactive")

    view = {
        "title": portal.title,
        "slug": portal.slug,
        "network_name": portal.network_name,
        "network_secret": portal.network_secret,
        "security_kind": portal.security_kind,
        "instructions": portal.instructions,
    }
    hits.record_hit(db, models.Portal.visit_count, portal.id, atomic=settings.hit_counter_atomic)
    return view


def list_portals(db: Session, owner_id: int) -> list[models.Portal]:
    return _read(db, lambda: (
        db.query(models.Portal)
        .filter_by(owner_id=owner_id)
        .order_by(models.Portal.created_at.desc(), models.Portal.id.desc())
        .all()
    ))


def get_portal(db: Session, owner_id: int, portal_id: str) -> models.Portal:
    portal = _read(db, lambda: db.query(models.Portal).filter_by(portal_id=portal_id, owner_id=owner_id).first())
    if not portal:
        raise NotFound("Portal not found")
    return portal


def update_portal(db: Session, owner_id: int, portal_id: str, **changes) -> models.Portal:
    fields = ("title", "network_name", "network_secret", "security_kind", "instructions", "active")
    changes = {k: v for k, v in changes.items() if k in fields and v is not None}
    ensure_valid(portal_update_rules(), changes)
    portal = get_portal(db, owner_id, portal_id)

    for field, value in changes.items():
        setattr(portal, field, _strip(value) if field not in ("network_secret", "active") else value)

    if portal.security_kind == models.SecurityKind.OPEN.value:
        portal.network_secret = ""
    elif not (portal.network_secret or "").strip():
        db.rollback()
        raise ValidationFailed([{"field": "network_secret", "message": "Password is required for secured networks"}])

    portal.updated_at = models.utcnow()
    db.commit()
    db.refresh(portal)
    logger.info("Updated portal slug=%s owner=%s", portal.slug, owner_id)
    return portal


def delete_portal(db: Session, owner_id: int, portal_id: str) -> None:
    portal = get_portal(db, owner_id, portal_id)
    slug = portal.slug
    db.delete(portal)
    db.commit()
    logger.info("Deleted portal slug=%s owner=%s", slug, owner_id)
