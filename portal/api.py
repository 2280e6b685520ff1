"""JSON endpoints mirroring the session capability interface."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import AuthResult, SessionStore
from .errors import ValidationFailure
from .forms import AGE_MAX, AGE_MIN, NAME_MIN_LENGTH, PASSWORD_MIN_LENGTH, validate_registration
from .models import User
from .records import RecordStore
from .storage import MappingBackend


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=256)
    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=120)
    age: Optional[int] = Field(default=None, ge=AGE_MIN, le=AGE_MAX)


class SessionUser(BaseModel):
    id: str
    email: str
    name: str
    role: str
    age: Optional[int] = None
    created_at: datetime
    last_activity: datetime


class SessionResponse(BaseModel):
    ok: bool
    error: Optional[str] = None
    user: Optional[SessionUser] = None


def user_to_response(user: User) -> SessionUser:
    return SessionUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        age=user.age,
        created_at=user.created_at,
        last_activity=user.last_activity,
    )


def _result_response(result: AuthResult, *, failure_status: int) -> JSONResponse:
    if result.ok and result.user is not None:
        body = SessionResponse(ok=True, user=user_to_response(result.user))
        return JSONResponse(body.model_dump(mode="json"))
    error = result.error.value if result.error is not None else None
    body = SessionResponse(ok=False, error=error)
    return JSONResponse(body.model_dump(mode="json"), status_code=failure_status)


def register_api_routes(app: FastAPI, records: RecordStore) -> None:
    """Attach the ``/api`` routes to ``app``; they share the browser session cookie."""

    router = APIRouter(prefix="/api")

    def _session(request: Request) -> SessionStore:
        return SessionStore(records, MappingBackend(request.session))

    @router.get("/session", response_model=SessionResponse)
    async def read_session(request: Request) -> SessionResponse:
        user = _session(request).current_user
        if user is None:
            return SessionResponse(ok=False)
        return SessionResponse(ok=True, user=user_to_response(user))

    @router.post("/login")
    async def login(request: Request, payload: LoginRequest) -> JSONResponse:
        result = _session(request).login(payload.email, payload.password)
        return _result_response(result, failure_status=401)

    @router.post("/register")
    async def register(request: Request, payload: RegisterRequest) -> JSONResponse:
        age = str(payload.age) if payload.age is not None else None
        try:
            form = validate_registration(
                payload.email,
                payload.password,
                payload.name,
                age,
                age_required=False,
            )
        except ValidationFailure as exc:
            body = {"ok": False, "error": "invalid_input", "messages": exc.errors}
            return JSONResponse(body, status_code=422)

        result = _session(request).register(form.email, form.password, form.name, form.age)
        return _result_response(result, failure_status=409)

    @router.post("/logout", response_model=SessionResponse)
    async def logout(request: Request) -> SessionResponse:
        _session(request).logout()
        return SessionResponse(ok=True)

    app.include_router(router)


__all__ = ["register_api_routes", "user_to_response"]
