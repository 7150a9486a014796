"""Tripweave server entry point"""
import uvicorn
import logging
from api.app import create_app
from config.settings import settings

logger = logging.getLogger(__name__)

# ASGI app for `uvicorn main:app`
app = create_app()


def main():
    """Run the orchestrator API under uvicorn"""
    catalog_source = settings.INTENT_CATALOG_PATH or "built-in"
    remote = ", ".join(sorted(settings.CAPABILITY_ENDPOINTS)) or "none"

    logger.info(f"""
    ╔════════════════════════════════════════╗
    ║        Tripweave Server Starting       ║
    ╚════════════════════════════════════════╝
      Address:   http://{settings.HOST}:{settings.PORT}
      Contexts:  {settings.USER_CONTEXT_BACKEND} (retention {settings.MEMORY_RETENTION_DAYS} days)
      Catalog:   {catalog_source}
      Remote:    {remote}
    """)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        # let in-flight requests drain before the lifespan shutdown flushes contexts
        timeout_graceful_shutdown=int(settings.SHUTDOWN_DRAIN_SECONDS),
    )


if __name__ == "__main__":
    main()
