import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import SQLAlchemyError

from qrhub import auth, crud, database, models, qr_utils, schemas
from qrhub.config import Settings, get_settings
from qrhub.errors import QRHubError, ValidationFailed
from qrhub.lockout import AccountLocked, LockoutPolicy, Ok, verify_credentials
from qrhub.logos import LogoUpload

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("qrhub")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # --- DB tables ---
    models.Base.metadata.create_all(bind=database.engine)
    yield


app = FastAPI(
    title="QR Hub",
    description="Short links and WiFi-sharing portals, each with a scannable QR code.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- CORS (allow frontend dev servers, etc.) ---
_settings = get_settings()
origins = ["*"] if not _settings.production else [_settings.public_base_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error mapping ----------

@app.exception_handler(QRHubError)
def handle_core_error(request: Request, exc: QRHubError):
    body = {"detail": exc.detail}
    if isinstance(exc, ValidationFailed):
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(SQLAlchemyError)
def handle_storage_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# ---------- Presenters ----------

def link_out(link: models.ShortLink, settings: Settings) -> schemas.LinkOut:
    return schemas.LinkOut(
        id=link.id,
        code=link.code,
        title=link.title,
        target_url=link.target_url,
        redirect_url=settings.link_url(link.code),
        qr_code_data=qr_utils.to_data_url(link.rendered_image),
        click_count=link.click_count,
        active=link.active,
        has_logo=bool(link.logo_path),
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


def portal_out(portal: models.Portal, settings: Settings, with_secret: bool = True):
    fields = dict(
        portal_id=portal.portal_id,
        slug=portal.slug,
        title=portal.title,
        network_name=portal.network_name,
        security_kind=portal.security_kind,
        instructions=portal.instructions,
        portal_url=settings.portal_url(portal.slug),
        qr_code_data=qr_utils.to_data_url(portal.rendered_image),
        visit_count=portal.visit_count,
        active=portal.active,
        created_at=portal.created_at,
        updated_at=portal.updated_at,
    )
    if with_secret:
        return schemas.PortalOut(network_secret=portal.network_secret, **fields)
    return schemas.PortalSummary(**fields)


def read_logo(upload: UploadFile | None, max_bytes: int) -> LogoUpload | None:
    if upload is None or not upload.filename:
        return None
    # One byte past the limit is enough for check_upload to reject it
    data = upload.file.read(max_bytes + 1)
    return LogoUpload(filename=upload.filename, content_type=upload.content_type, data=data)


# Health check (useful for uptime monitors & load balancers)
@app.get("/health", include_in_schema=False)
def health(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "env": settings.environment}


# ---------- Auth ----------

@app.post("/auth/register", response_model=schemas.AccountOut, status_code=status.HTTP_201_CREATED)
def register(body: schemas.RegisterIn, db=Depends(database.get_db), settings: Settings = Depends(get_settings)):
    return crud.register_account(db, settings, body.handle, body.email, body.password)


@app.post("/auth/login", response_model=schemas.Token)
def login(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db=Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    account_id = crud.find_account_id(db, form_data.username)
    result = verify_credentials(db, account_id, form_data.password, LockoutPolicy.from_settings(settings))

    if isinstance(result, AccountLocked):
        minutes = max(1, -(-result.retry_after // 60))
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail=f"Account is temporarily locked due to too many failed login attempts. "
                   f"Try again in {minutes} minute(s).",
            headers={"Retry-After": str(result.retry_after)},
        )
    if not isinstance(result, Ok):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = auth.create_access_token(settings, {"sub": str(result.account.id)})
    # Only set secure cookie if HTTPS is configured
    response.set_cookie(
        key=auth.COOKIE_NAME, value=token,
        httponly=True, samesite="lax", secure=settings.public_base_url.startswith("https://"), path="/",
        max_age=settings.access_token_expire_minutes * 60,
    )
    logger.info("Login ok for account_id=%s", result.account.id)
    return {"access_token": token, "token_type": "bearer"}


@app.post("/auth/logout", include_in_schema=False)
def logout(response: Response):
    response.delete_cookie(auth.COOKIE_NAME, path="/")
    return {"ok": True}


@app.get("/auth/me", response_model=schemas.AccountOut)
def me(account=Depends(auth.get_current_account)):
    return account


# ---------- Short links ----------

@app.post("/api/links", response_model=schemas.LinkOut, status_code=status.HTTP_201_CREATED)
def create_link(
    title: str = Form(...),
    target_url: str = Form(...),
    custom_code: str | None = Form(None),
    logo: UploadFile | None = File(None),
    db=Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    account=Depends(auth.get_current_account),
):
    link = crud.create_short_link(
        db, settings, account.id, title, target_url,
        logo=read_logo(logo, settings.max_logo_bytes), candidate_code=custom_code or None,
    )
    return link_out(link, settings)


@app.get("/api/links", response_model=schemas.LinkList)
def list_links(db=Depends(database.get_db), settings: Settings = Depends(get_settings),
               account=Depends(auth.get_current_account)):
    items = [link_out(link, settings) for link in crud.list_short_links(db, account.id)]
    return {"items": items, "total": len(items)}


@app.get("/api/links/check/{code}", response_model=schemas.Availability)
def check_code(code: str, db=Depends(database.get_db), account=Depends(auth.get_current_account)):
    available, message = crud.check_code_availability(db, code)
    return {"available": available, "message": message}


@app.get("/api/links/{link_id}", response_model=schemas.LinkOut)
def get_link(link_id: int, db=Depends(database.get_db), settings: Settings = Depends(get_settings),
             account=Depends(auth.get_current_account)):
    return link_out(crud.get_short_link(db, account.id, link_id), settings)


@app.get("/api/links/{link_id}/qr.png", include_in_schema=False)
def get_link_qr(link_id: int, db=Depends(database.get_db), account=Depends(auth.get_current_account)):
    link = crud.get_short_link(db, account.id, link_id)
    return Response(content=link.rendered_image, media_type="image/png")


@app.patch("/api/links/{link_id}", response_model=schemas.LinkOut)
def update_link(
    link_id: int,
    title: str | None = Form(None),
    target_url: str | None = Form(None),
    active: bool | None = Form(None),
    logo: UploadFile | None = File(None),
    db=Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    account=Depends(auth.get_current_account),
):
    link = crud.update_short_link(
        db, settings, account.id, link_id,
        title=title, target_url=target_url, active=active, logo=read_logo(logo, settings.max_logo_bytes),
    )
    return link_out(link, settings)


@app.delete("/api/links/{link_id}", response_model=schemas.MessageOut)
def delete_link(link_id: int, db=Depends(database.get_db), account=Depends(auth.get_current_account)):
    crud.delete_short_link(db, account.id, link_id)
    return {"ok": True, "detail": "QR Code deleted successfully"}


# ---------- WiFi portals ----------

@app.post("/api/portals", response_model=schemas.PortalOut, status_code=status.HTTP_201_CREATED)
def create_portal(body: schemas.PortalCreate, db=Depends(database.get_db),
                  settings: Settings = Depends(get_settings), account=Depends(auth.get_current_account)):
    portal = crud.create_portal(
        db, settings, account.id,
        title=body.title, slug=body.slug, network_name=body.network_name,
        network_secret=body.network_secret, security_kind=body.security_kind,
        instructions=body.instructions,
    )
    return portal_out(portal, settings)


@app.get("/api/portals", response_model=schemas.PortalList)
def list_portals(db=Depends(database.get_db), settings: Settings = Depends(get_settings),
                 account=Depends(auth.get_current_account)):
    # No secrets in list view
    items = [portal_out(p, settings, with_secret=False) for p in crud.list_portals(db, account.id)]
    return {"items": items, "total": len(items)}


@app.get("/api/portals/check/{slug}", response_model=schemas.Availability)
def check_slug(slug: str, db=Depends(database.get_db)):
    available, message = crud.check_slug_availability(db, slug)
    return {"available": available, "message": message}


@app.get("/api/portals/public/{slug}", response_model=schemas.PublicPortalOut)
def public_portal(slug: str, db=Depends(database.get_db), settings: Settings = Depends(get_settings)):
    return crud.resolve_portal_public(db, settings, slug)


@app.get("/api/portals/{portal_id}", response_model=schemas.PortalOut)
def get_portal(portal_id: str, db=Depends(database.get_db), settings: Settings = Depends(get_settings),
               account=Depends(auth.get_current_account)):
    return portal_out(crud.get_portal(db, account.id, portal_id), settings)


@app.patch("/api/portals/{portal_id}", response_model=schemas.PortalOut)
def update_portal(portal_id: str, body: schemas.PortalUpdate, db=Depends(database.get_db),
                  settings: Settings = Depends(get_settings), account=Depends(auth.get_current_account)):
    portal = crud.update_portal(db, account.id, portal_id, **body.model_dump(exclude_none=True))
    return portal_out(portal, settings)


@app.delete("/api/portals/{portal_id}", response_model=schemas.MessageOut)
def delete_portal(portal_id: str, db=Depends(database.get_db), account=Depends(auth.get_current_account)):
    crud.delete_portal(db, account.id, portal_id)
    return {"ok": True, "detail": "Portal deleted successfully"}


# ---------- Redirect ----------

@app.get("/r/{code}", include_in_schema=False)
def redirect_code(code: str, db=Depends(database.get_db), settings: Settings = Depends(get_settings)):
    target_url = crud.resolve_short_link(db, settings, code)
    return RedirectResponse(url=target_url, status_code=307)
