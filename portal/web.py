"""Browser-based portal: landing page, role dashboards and account settings."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .access import (
    ADMIN_VIEW,
    CLIENT_VIEW,
    DIRECTOR_VIEW,
    REVIEWER_ROLES,
    VIEW_ROLES,
    Access,
    allowed,
    check_access,
    dashboard_for,
)
from .api import register_api_routes
from .auth import AuthError, SessionStore
from .config import PortalConfig, load_config
from .directory import CREATABLE_ROLES, UserDirectory
from .enrollment import Enrollment
from .errors import CorruptPersistedState, ValidationFailure
from .forms import AGE_MAX, AGE_MIN, PASSWORD_MIN_LENGTH, validate_login, validate_registration
from .models import ROLES, User
from .records import RecordStore
from .storage import MappingBackend, SQLiteBackend

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SESSION_COOKIE_NAME = "kinetic_session"

VIEW_ROUTES = {
    DIRECTOR_VIEW: "director_dashboard",
    ADMIN_VIEW: "admin_dashboard",
    CLIENT_VIEW: "client_dashboard",
}

logger = logging.getLogger("kinetic.portal.web")


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("PORTAL_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d %b %Y %H:%M")


def build_record_store(config: PortalConfig) -> RecordStore:
    backend = SQLiteBackend(config.database_path)
    backend.initialize()
    return RecordStore(backend, seed=config.director)


def create_app(
    *,
    records: Optional[RecordStore] = None,
    config: Optional[PortalConfig] = None,
    session_secret: Optional[str] = None,
) -> FastAPI:
    """Create the portal web application."""

    if config is None:
        config = load_config()
    if records is None:
        records = build_record_store(config)

    if session_secret is None:
        session_secret = config.session_secret
    if not session_secret:
        raise RuntimeError("PORTAL_SESSION_SECRET must be configured to serve the portal")

    directory = UserDirectory(records)
    enrollment = Enrollment(records)

    app = FastAPI(
        title="Kinetic School Portal",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.records = records
    app.state.directory = directory
    app.state.enrollment = enrollment

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=config.secure_cookies,
        same_site="lax",
        max_age=60 * 60 * 24 * 30,
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["datetime"] = _format_datetime

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _session(request: Request) -> SessionStore:
        return SessionStore(records, MappingBackend(request.session))

    def _redirect(request: Request, route_name: str) -> RedirectResponse:
        return RedirectResponse(
            request.url_for(route_name),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    def _guard(request: Request, view: str) -> Tuple[Optional[User], Optional[RedirectResponse]]:
        user = _session(request).current_user
        decision = check_access(user, VIEW_ROLES[view])
        if decision is Access.REDIRECT_TO_LOGIN:
            return None, _redirect(request, "index")
        if decision is Access.REDIRECT_TO_DEFAULT_DASHBOARD:
            return None, _redirect(request, "dashboard")
        return user, None

    def _render(request: Request, template: str, user: Optional[User], **context: object) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            template,
            {"current_user": user, "messages": _consume_flash(request), **context},
        )

    @app.exception_handler(CorruptPersistedState)
    async def corrupt_state_handler(request: Request, exc: CorruptPersistedState):
        logger.error("Portal data is corrupt: %s", exc, exc_info=exc)
        return templates.TemplateResponse(
            request,
            "error.html",
            {"current_user": None, "messages": [], "error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.get("/", response_class=HTMLResponse, name="index")
    async def index(request: Request):
        return _render(
            request,
            "index.html",
            _session(request).current_user,
            age_min=AGE_MIN,
            age_max=AGE_MAX,
            password_min_length=PASSWORD_MIN_LENGTH,
        )

    @app.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(""), password: str = Form("")):
        try:
            credentials = validate_login(email, password)
        except ValidationFailure as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request, "index")

        result = _session(request).login(credentials.email, credentials.password)
        if not result:
            _flash(request, "Invalid email or password.", category="error")
            return _redirect(request, "index")

        _flash(request, "Welcome back!", category="success")
        return _redirect(request, "dashboard")

    @app.post("/register", name="process_register")
    async def process_register(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        name: str = Form(""),
        age: str = Form(""),
    ):
        try:
            form = validate_registration(email, password, name, age)
        except ValidationFailure as exc:
            for message in exc.errors:
                _flash(request, message, category="error")
            return _redirect(request, "index")

        result = _session(request).register(form.email, form.password, form.name, form.age)
        if result.error is AuthError.EMAIL_TAKEN:
            _flash(request, "A user with that email already exists.", category="error")
            return _redirect(request, "index")

        _flash(request, "Account created. Welcome aboard!", category="success")
        return _redirect(request, "dashboard")

    @app.get("/logout", name="logout")
    async def logout(request: Request):
        _session(request).logout()
        return _redirect(request, "index")

    @app.get("/dashboard", name="dashboard")
    async def dashboard(request: Request):
        user = _session(request).current_user
        if user is None:
            return _redirect(request, "index")
        return _redirect(request, VIEW_ROUTES[dashboard_for(user.role)])

    @app.get("/director", response_class=HTMLResponse, name="director_dashboard")
    async def director_dashboard(request: Request, q: str = "", selected: str = ""):
        user, redirect = _guard(request, DIRECTOR_VIEW)
        if redirect is not None:
            return redirect
        overview = enrollment.director_overview(q)
        summary = None
        if selected:
            try:
                summary = enrollment.user_summary(selected)
            except ValueError as exc:
                _flash(request, str(exc), category="error")
        return _render(
            request,
            "director.html",
            user,
            overview=overview,
            summary=summary,
            search=q,
            roles=ROLES,
            creatable_roles=CREATABLE_ROLES,
        )

    @app.post("/director/users", name="create_user")
    async def create_user(
        request: Request,
        email: str = Form(""),
        name: str = Form(""),
        password: str = Form(""),
        role: str = Form("client"),
    ):
        user, redirect = _guard(request, DIRECTOR_VIEW)
        if redirect is not None:
            return redirect
        try:
            created = directory.create_user(
                user,
                email=email.strip(),
                password=password,
                name=name.strip(),
                role=role,
            )
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, f"Created {created.name} ({created.role}).", category="success")
        return _redirect(request, "director_dashboard")

    @app.post("/director/users/{user_id}/role", name="assign_role")
    async def assign_role(request: Request, user_id: str, role: str = Form(...)):
        user, redirect = _guard(request, DIRECTOR_VIEW)
        if redirect is not None:
            return redirect
        try:
            updated = directory.assign_role(user, user_id, role)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, f"{updated.name} is now {updated.role}.", category="success")
        return _redirect(request, "director_dashboard")

    @app.post("/director/users/{user_id}/delete", name="delete_user")
    async def delete_user(request: Request, user_id: str):
        user, redirect = _guard(request, DIRECTOR_VIEW)
        if redirect is not None:
            return redirect
        try:
            directory.delete_user(user, user_id)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, "User deleted.", category="success")
        return _redirect(request, "director_dashboard")

    @app.get("/admin", response_class=HTMLResponse, name="admin_dashboard")
    async def admin_dashboard(request: Request):
        user, redirect = _guard(request, ADMIN_VIEW)
        if redirect is not None:
            return redirect
        return _render(request, "admin.html", user, overview=enrollment.admin_overview())

    @app.post("/applications/{application_id}/{decision}", name="review_application")
    async def review_application(request: Request, application_id: str, decision: str):
        user, redirect = _guard(request, ADMIN_VIEW)
        if redirect is not None:
            return redirect
        try:
            enrollment.review_application(user, application_id, decision)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, f"Application {decision}.", category="success")
        return _redirect(request, VIEW_ROUTES[dashboard_for(user.role)])

    @app.get("/client", response_class=HTMLResponse, name="client_dashboard")
    async def client_dashboard(request: Request):
        user, redirect = _guard(request, CLIENT_VIEW)
        if redirect is not None:
            return redirect
        return _render(
            request,
            "client.html",
            user,
            overview=enrollment.client_overview(user.id),
            can_review=allowed(user.role, REVIEWER_ROLES),
        )

    @app.post("/client/applications", name="submit_application")
    async def submit_application(request: Request, program: str = Form(""), message: str = Form("")):
        user, redirect = _guard(request, CLIENT_VIEW)
        if redirect is not None:
            return redirect
        try:
            enrollment.submit_application(user, program=program, message=message)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
        else:
            _flash(request, "Application sent. We will contact you soon.", category="success")
        return _redirect(request, "client_dashboard")

    @app.get("/account", response_class=HTMLResponse, name="account")
    async def account(request: Request):
        user = _session(request).current_user
        if user is None:
            return _redirect(request, "index")
        return _render(request, "account.html", user)

    @app.post("/account/profile", name="update_profile")
    async def update_profile(request: Request, name: str = Form(""), email: str = Form("")):
        session = _session(request)
        user = session.current_user
        if user is None:
            return _redirect(request, "index")

        try:
            updated = directory.update_profile(user.id, name=name, email=email)
        except ValueError as exc:
            _flash(request, str(exc), category="error")
            return _redirect(request, "account")

        session.refresh(updated)
        _flash(request, "Profile updated.", category="success")
        return _redirect(request, "account")

    register_api_routes(app, records)

    return app


__all__ = ["create_app", "build_record_store"]
