"""Signup and login endpoints for chat users and dashboard admins.

Endpoints:
    POST /api/auth/signup:        Create a chat user and return a token
    POST /api/auth/login:         Exchange email + password for a token
    POST /api/admin/auth/signup:  Create a dashboard admin
    POST /api/admin/auth/login:   Admin login (token kind "admin")
    GET  /api/admin/auth/me:      The authenticated admin
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_accounts, get_current_admin
from ..store import Admin
from .service import AccountService

router = APIRouter(prefix="/api/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/admin/auth", tags=["admin"])


# =============================================================================
# Request Models
# =============================================================================


class SignupRequest(BaseModel):
    fullName: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Email address")
    password: Optional[str] = Field(None, description="Plain-text password")


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/signup", status_code=201)
async def signup(body: SignupRequest, accounts: AccountService = Depends(get_accounts)) -> dict:
    user, token = await accounts.signup(body.fullName, body.email, body.password)
    return {"message": "User registered successfully!", "token": token, "user": user.model_dump(mode="json")}


@router.post("/login")
async def login(body: LoginRequest, accounts: AccountService = Depends(get_accounts)) -> dict:
    """Log in. Deactivated accounts and active bans are rejected with 403;
    a ban whose expiry has passed is lifted on the spot."""
    user, token = await accounts.login(body.email, body.password)
    return {"message": "Logged in successfully!", "token": token, "user": user.model_dump(mode="json")}


@admin_router.post("/signup", status_code=201)
async def admin_signup(body: SignupRequest, accounts: AccountService = Depends(get_accounts)) -> dict:
    admin, token = await accounts.admin_signup(body.fullName, body.email, body.password)
    return {"message": "Admin registered successfully!", "token": token, "admin": admin.model_dump(mode="json")}


@admin_router.post("/login")
async def admin_login(body: LoginRequest, accounts: AccountService = Depends(get_accounts)) -> dict:
    admin, token = await accounts.admin_login(body.email, body.password)
    return {"message": "Logged in successfully!", "token": token, "admin": admin.model_dump(mode="json")}


@admin_router.get("/me")
async def admin_me(admin: Admin = Depends(get_current_admin)) -> dict:
    return admin.model_dump(mode="json")
