from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from agence_api.database.database import engine, Base

# Import middleware
from agence_api.common.exceptions import AgenceError, ConsistencyError
from agence_api.common.middleware import RequestContextMiddleware, SecurityHeadersMiddleware

# Import routers
from agence_api.modules.auth.router import auth_router
from agence_api.modules.registry.router import registry_router
from agence_api.modules.permissions.router import permissions_router
from agence_api.modules.agencies.router import agencies_router
from agence_api.modules.clients.router import clients_router
from agence_api.modules.suppliers.router import suppliers_router
from agence_api.modules.cash.router import cash_router
from agence_api.modules.invoices.router import router as invoices_router
from agence_api.modules.audit.router import audit_router

# Import models for table creation
import agence_api.modules.agencies.models
import agence_api.modules.auth.models
import agence_api.modules.clients.models
import agence_api.modules.suppliers.models
import agence_api.modules.cash.models
import agence_api.modules.invoices.models
import agence_api.modules.audit.models

from agence_api.core.config import settings
from agence_api.modules.registry.service import get_module_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Agence Voyage API",
    description="Gestion multi-agences : modules, permissions, caisse, factures, clients et fournisseurs",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AgenceError)
async def agence_error_handler(request: Request, exc: AgenceError):
    if isinstance(exc, ConsistencyError):
        logger.error(f"{request.method} {request.url.path}: {exc.code} {exc.message} {exc.details}")
    else:
        logger.debug(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(registry_router)
app.include_router(permissions_router)
app.include_router(agencies_router)
app.include_router(clients_router)
app.include_router(suppliers_router)
app.include_router(cash_router)
app.include_router(invoices_router)
app.include_router(audit_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=engine)


@app.get("/")
async def read_root():
    return {
        "message": "Agence Voyage API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Agence Voyage API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    registry = get_module_registry()
    logger.info(f"Module registry loaded: {len(registry)} modules")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Agence Voyage API shutting down...")
