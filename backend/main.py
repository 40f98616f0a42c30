from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import time

from routers import receipts

VERSION = "0.1.0"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()]

# Third-party loggers that drown out ours below DEBUG.  httpx/httpcore are
# pulled in by the Anthropic client.
_CHATTY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level != "DEBUG":
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("tally")

app = FastAPI(
    title="Tally — Receipt Reader",
    description="Turns receipt photos and OCR text into structured expense data",
    version=VERSION,
)

# Credentials are only allowed with an explicit origin list, never with "*".
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS or ["*"],
    allow_credentials=bool(CORS_ORIGINS),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(receipts.router, prefix="/api/receipts", tags=["receipts"])


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Failed requests at WARNING, everything else at DEBUG."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    level = logging.WARNING if response.status_code >= 400 else logging.DEBUG
    logger.log(level, "%s %s → %s (%.0fms)",
               request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.on_event("startup")
async def on_startup():
    logger.info("Starting Tally v%s  LOG_LEVEL=%s  AI parser=%s", VERSION, LOG_LEVEL,
                "enabled" if os.environ.get("ANTHROPIC_API_KEY") else "disabled")


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}
