from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.config import settings

# ==================================================
# LOG
# ==================================================
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("pintas")

# ==================================================
# DATABASE
# ==================================================
from app.database import engine, init_db

# ==================================================
# FASTAPI APP
# ==================================================
app = FastAPI(
    title="Pintas Storefront",
    version="1.0",
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url=None,
)

# ==================================================
# MIDDLEWARE
# ==================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================================================
# ERRORS
# ==================================================
@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    # every error body is {"error": ...}; ApiError details already are
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message, "details": jsonable_encoder(errors)})


# ==================================================
# ROUTERS
# ==================================================
import app.routers.username as username
import app.routers.profile as profile
import app.routers.drafts as drafts
import app.routers.products as products
import app.routers.uploads as uploads
import app.routers.leads as leads
import app.routers.google as google
import app.routers.webinar as webinar
import app.routers.webhooks as webhooks
import app.routers.public as public

app.include_router(username.router, tags=["Username"])
app.include_router(profile.router, tags=["Profile"])
app.include_router(drafts.router, tags=["Drafts"])
app.include_router(products.router, tags=["Products"])
app.include_router(uploads.router, tags=["Uploads"])
app.include_router(leads.router, tags=["Leads"])
app.include_router(google.router, tags=["Google"])
app.include_router(webinar.router, tags=["Webinar"])
app.include_router(webhooks.router, tags=["Webhooks"])
app.include_router(public.router, tags=["Public"])


# ==================================================
# STARTUP
# ==================================================
@app.on_event("startup")
def on_startup():
    logger.info("Starting Pintas storefront (%s)", settings.ENV)
    init_db(engine)
    logger.info("Database ready")


# ==================================================
# HEALTH
# ==================================================
@app.get("/")
def health():
    return {"status": "ok", "service": "pintas"}
