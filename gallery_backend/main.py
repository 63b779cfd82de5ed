import os
import logging

from dotenv import load_dotenv
import uvicorn

# =====================================================
# ENV + LOGGING
# =====================================================
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("gallery_backend.main")

# =====================================================
# FASTAPI CORE
# =====================================================
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gallery_backend import config
from gallery_backend.db import init_db
from gallery_backend.errors import GalleryError
from gallery_backend.scheduler import start_scheduler, stop_scheduler, get_scheduler_status

# =====================================================
# CREATE APP
# =====================================================
app = FastAPI(
    title="LightGallery Backend",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# =====================================================
# MIDDLEWARE
# =====================================================
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
allowed_origins = [
    FRONTEND_URL,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

if os.getenv("CORS_ALLOW_ALL", "false").lower() in ("1", "true", "yes"):
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =====================================================
# ERRORS
# =====================================================
@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError):
    log.info("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": exc.message},
    )


# =====================================================
# AUTO LOAD ALL API ROUTES
# =====================================================
from gallery_backend.api import router as api_router
from gallery_backend.api import auto_register_routes

auto_register_routes()
app.include_router(api_router, prefix="/api")


# =====================================================
# HEALTH
# =====================================================
@app.get("/health")
def health():
    return {"status": "ok", "scheduler": get_scheduler_status()["running"]}


# =====================================================
# STARTUP / SHUTDOWN
# =====================================================
@app.on_event("startup")
def on_startup():
    init_db()
    if config.SCHEDULER_ENABLED:
        start_scheduler()
    log.info("🚀 LightGallery backend started")


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()


if __name__ == "__main__":
    uvicorn.run(
        "gallery_backend.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
