"""
Module entry point for running the application.
"""
import uvicorn

from .core.settings import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "optimus.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
