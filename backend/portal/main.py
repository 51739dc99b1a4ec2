import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded  # type: ignore[import]
from slowapi.middleware import SlowAPIMiddleware  # type: ignore[import]

from backend.portal import config
from backend.portal.api import admin_endpoints, guard_endpoints
from backend.portal.auth.dependencies import require_admin_portal_user
from backend.portal.auth.rate_limiting import limiter, rate_limit_handler
from backend.portal.dependencies import initialize_on_startup
from backend.portal.utils.observability import configure_logging, configure_metrics

configure_logging()

# Docs are served by the admin-only routes below
app = FastAPI(title="Portal Access Guard", docs_url=None, redoc_url=None, openapi_url=None)
configure_metrics(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.CORS_ALLOWED_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(guard_endpoints.router)
app.include_router(admin_endpoints.router)


@app.get("/")
async def read_root():
    return {"message": "Portal Access Guard API"}


@app.get("/docs", include_in_schema=False)
async def get_swagger_documentation(_=Depends(require_admin_portal_user)):
    """Swagger UI documentation - admin portal access only."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="API Documentation")


@app.get("/redoc", include_in_schema=False)
async def get_redoc_documentation(_=Depends(require_admin_portal_user)):
    """ReDoc documentation - admin portal access only."""
    return get_redoc_html(openapi_url="/openapi.json", title="API Documentation")


@app.get("/openapi.json", include_in_schema=False)
async def get_openapi_schema(_=Depends(require_admin_portal_user)):
    """OpenAPI schema - admin portal access only."""
    return JSONResponse(content=get_openapi(
        title=app.title,
        version=app.version,
        openapi_version=app.openapi_version,
        description=app.description,
        routes=app.routes,
    ))


@app.on_event("startup")
async def startup_event():
    logging.info("Application starting up, checking dependencies...")
    try:
        await initialize_on_startup()
        logging.info("Dependencies initialized successfully")
    except Exception as e:
        logging.error(f"Failed to initialize dependencies: {str(e)}")
