"""
FastAPI application entry point for the demo microservice.

Initializes the FastAPI app, configures logging, installs the Cumulocity
helpers and registers the example routes.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config_loader import config
from .plugin import setup_c8y
from .routes import router

# Configure logging for the application
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Startup and shutdown logging."""
    _ = app
    logger.info("Starting c8y-fastapi demo")
    logger.info("Cumulocity base URL: %s", config.base_url)
    logger.info("Deployed tenant: %s", config.bootstrap_tenant)
    try:
        yield
    finally:
        logger.info("Shutting down c8y-fastapi demo")


app = FastAPI(
    title="c8y-fastapi demo",
    version="0.1.0",
    description="Example microservice using the Cumulocity FastAPI helpers",
    lifespan=app_lifespan,
)

# Register routes before setup so manifest probe checks see them
app.include_router(router)
setup_c8y(app, config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.server_host,
        port=config.server_port,
        log_level="info",
    )
