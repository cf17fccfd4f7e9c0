"""
Uvicorn server runner with configurable logging.

Usage:
    python run.py

Environment variables (set in .env file):
    DEBUG=true - Enable debug logging
    DATABASE_URL=sqlite:///./current.db - Job queue and suggestion storage
    PORT=8000 - Set server port (default: 8000)
    HOST=127.0.0.1 - Set server host (default: 127.0.0.1)
"""

import uvicorn
from app.config import get_settings

if __name__ == "__main__":
    import os

    settings = get_settings()

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    log_level = "debug" if settings.debug else "info"

    print(f"Starting {settings.app_name} server...")
    print(f"Host: {host}  Port: {port}  Log Level: {log_level}")
    print(f"Workers: {settings.worker_count}  Dry run: {settings.dry_run}")
    print(f"Docs available at: http://{host}:{port}/docs")

    # Background workers and live connections run inside the app process,
    # so auto-reload stays off
    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=False,
        log_level=log_level,
        access_log=True,
    )
