from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr


class RegisterIn(BaseModel):
    handle: str
    email: EmailStr
    password: str

class AccountOut(BaseModel):
    id: int
    handle: str
    email: str
    created_at: datetime
    last_success_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

class Token(BaseModel):
    access_token: str
    token_type: str

class LinkOut(BaseModel):
    id: int
    code: str
    title: str
    target_url: str
    redirect_url: str
    qr_code_data: str
    click_count: int
    active: bool
    has_logo: bool
    created_at: datetime
    updated_at: datetime

class LinkList(BaseModel):
    items: list[LinkOut]
    total: int

class Availability(BaseModel):
    available: bool
    message: str

class PortalCreate(BaseModel):
    title: str | None = None
    slug: str | None = None
    network_name: str | None = None
    network_secret: str | None = None
    security_kind: str | None = None
    instructions: str | None = None

class PortalUpdate(BaseModel):
    title: str | None = None
    network_name: str | None = None
    network_secret: str | None = None
    security_kind: str | None = None
    instructions: str | None = None
    active: bool | None = None

class PortalSummary(BaseModel):
    portal_id: str
    slug: str
    title: str
    network_name: str
    security_kind: str
    instructions: str
    portal_url: str
    qr_code_data: str
    visit_count: int
    active: bool
    created_at: datetime
    updated_at: datetime

class PortalOut(PortalSummary):
    network_secret: str

class PortalList(BaseModel):
    items: list[PortalSummary]
    total: int

class PublicPortalOut(BaseModel):
    title: str
    slug: str
    network_name: str
    network_secret: str
    security_kind: str
    instructions: str

class MessageOut(BaseModel):
    ok: bool
    detail: str
