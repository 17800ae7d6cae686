"""
Event Ride-Share Backend
========================
Entry point. Run with: uvicorn main:app --reload
or ``python main.py`` to use the host / port from settings.
"""

import uvicorn

from rideshare.api.app import create_app
from rideshare.config import settings

app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
