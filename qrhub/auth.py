from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from qrhub import crud, database, models
from qrhub.config import Settings, get_settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

COOKIE_NAME = "access_token"


def create_access_token(settings: Settings, data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_account_id(settings: Settings, token: str) -> int | None:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        return None


def get_current_account(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db=Depends(database.get_db),
    settings: Settings = Depends(get_settings),
) -> models.Account:
    # Bearer header first, then the httponly cookie set at login
    token = token or request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    account_id = decode_account_id(settings, token)
    account = crud.get_account(db, account_id) if account_id is not None else None
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return account
