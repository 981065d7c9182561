"""FastAPI application and routes."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import ConfigManager
from ..core.services import StashServices, open_services
from ..models.config import AppConfig, EnvSettings

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Global state (will be initialized in lifespan)
config_manager: ConfigManager = None
runtime_config: AppConfig = None
runtime_env_settings: EnvSettings = None
services: StashServices = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global config_manager, runtime_config, runtime_env_settings, services

    # Startup
    logger.info("Starting Tab Stash API...")

    config_manager = ConfigManager()
    try:
        runtime_config = config_manager.load_app_config()
        runtime_env_settings = config_manager.load_env_settings()
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

    services = await open_services(config_manager, runtime_config)

    yield

    # Shutdown
    logger.info("Shutting down Tab Stash API...")
    await services.aclose()


# Create FastAPI app
app = FastAPI(
    title="Tab Stash API",
    description="Stashed tabs and folders kept inside a bookmark tree",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
cors_origins: list[str] = []
try:
    boot_cfg = ConfigManager().load_app_config()
    cors_origins.extend(boot_cfg.allowed_origins)
except Exception as e:
    # Config may be absent in test/import contexts
    logger.debug(f"No CORS origins from config: {e}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and include routers
from .commands import router as commands_router
from .health import router as health_router

app.include_router(commands_router, prefix="/api/v1", tags=["commands"])
app.include_router(health_router, prefix="/api/v1", tags=["health"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Tab Stash API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/api/v1/health",
        "commands": "/api/v1/commands",
    }
