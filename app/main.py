"""FastAPI application setup for the Windline forecast service."""

from fastapi import FastAPI

from .api import router as api_router, windline_error_handler
from .errors import WindlineError

app = FastAPI(title="Windline")

app.add_exception_handler(WindlineError, windline_error_handler)


@app.get("/")
def health():
    """Liveness probe."""
    return {"status": "ok"}


# API routes
app.include_router(api_router, prefix="/v1")
