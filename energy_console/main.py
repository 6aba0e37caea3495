import logging
from urllib.parse import quote

from fastapi import Depends, FastAPI, Request
from fastapi.exception_handlers import http_exception_handler as fastapi_http_exception_handler
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from passlib.hash import bcrypt
from sqlalchemy import select

from .background import drain
from .database import async_session_maker, init_db
from .models import User
from .routers import (
    admin_cards,
    admin_email_templates,
    admin_form_schemas,
    admin_formulas,
    admin_leads,
    admin_pdf_shortcodes,
    admin_shortcodes,
    admin_themes,
    calculator,
)
from .routes_shared import templates
from .schemas import UserRead, UserUpdate
from .services.errors import ConsoleError
from .services.themes import ensure_default_theme, get_active_theme, theme_css_variables
from .settings.config import settings
from .users import cookie_transport, fastapi_users, auth_backend
from .utils import require_admin_html_user

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Energy Savings Calculator Console")

# The calculator is embedded on the marketing site
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
for module in (
    admin_cards,
    admin_form_schemas,
    admin_themes,
    admin_formulas,
    admin_shortcodes,
    admin_pdf_shortcodes,
    admin_email_templates,
    admin_leads,
    calculator,
):
    app.include_router(module.router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"],
)

app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
)


@app.exception_handler(ConsoleError)
async def _console_error_handler(request: Request, exc: ConsoleError):
    body = {"detail": exc.message}
    if exc.details:
        body["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


# -----------------------------------------------------
# Redirect unauthenticated HTML requests to /admin/login
# Applies to 401/403 for non-API, HTML page requests.
# -----------------------------------------------------
@app.exception_handler(FastAPIHTTPException)
async def _auth_redirect_handler(request: Request, exc: FastAPIHTTPException):
    path = request.url.path or "/"
    accept = (request.headers.get("accept") or "").lower()
    is_html = "text/html" in accept
    is_api = path.startswith("/api") or path.startswith("/auth") or path.startswith("/users")
    if exc.status_code in (401, 403) and is_html and not is_api and not path.startswith("/admin/login"):
        query = str(request.url.query or "")
        next_rel = f"{path}?{query}" if query else path
        return RedirectResponse(url=f"/admin/login?next={quote(next_rel, safe='')}", status_code=303)
    return await fastapi_http_exception_handler(request, exc)


# ----------------------
# Auto-create admin user
# ----------------------
async def create_admin_user():
    admin_email = settings.ADMIN_EMAIL
    admin_password = settings.ADMIN_PASSWORD

    if not admin_email or not admin_password:
        logger.warning("ADMIN_EMAIL or ADMIN_PASSWORD not set, skipping admin creation.")
        return

    async with async_session_maker() as session:
        result = await session.execute(select(User).where(User.email == admin_email))
        existing_admin = result.scalars().first()
        if not existing_admin:
            user = User(
                email=admin_email,
                hashed_password=bcrypt.hash(admin_password),
                username=settings.ADMIN_USERNAME,
                is_superuser=True,
                is_active=True,
                is_verified=True,
            )
            session.add(user)
            await session.commit()
            logger.info("Admin user created: %s", admin_email)
        else:
            logger.info("Admin user already exists: %s", admin_email)


async def seed_default_theme():
    async with async_session_maker() as session:
        await ensure_default_theme(session)


@app.on_event("startup")
async def on_startup():
    await init_db()
    await create_admin_user()
    try:
        await seed_default_theme()
    except Exception:  # noqa: BLE001
        # schema may not exist yet before the first migration
        logger.exception("Default theme seed failed")


@app.on_event("shutdown")
async def on_shutdown():
    await drain()


# ----------------------
# Pages
# ----------------------
@app.get("/", response_class=HTMLResponse)
async def calculator_page(request: Request):
    async with async_session_maker() as session:
        theme = await get_active_theme(session)
    return templates.TemplateResponse(
        "calculator.html",
        {
            "request": request,
            "company_name": settings.COMPANY_NAME,
            "theme_css": theme_css_variables(theme["theme_data"]),
        },
    )


@app.get("/admin/login", response_class=HTMLResponse)
async def admin_login_page(request: Request, next: str = "/admin"):
    return templates.TemplateResponse(
        "admin/login.html",
        {"request": request, "next": next if next.startswith("/") else "/admin"},
    )


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(request: Request, user=Depends(require_admin_html_user)):
    return templates.TemplateResponse(
        "admin/index.html",
        {"request": request, "user": user, "company_name": settings.COMPANY_NAME},
    )


@app.get("/logout")
async def app_logout():
    resp = RedirectResponse(url="/admin/login", status_code=303)
    name = getattr(cookie_transport, "cookie_name", "console_session")
    domain = getattr(cookie_transport, "cookie_domain", None)
    resp.delete_cookie(name, path="/")
    if domain:
        resp.delete_cookie(name, path="/", domain=domain)
    return resp


@app.get("/healthz")
async def healthz():
    return {"ok": True}
