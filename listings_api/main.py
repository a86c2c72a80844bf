from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from listings_api.api.deps import get_normalizer_config, get_photo_store
from listings_api.api.v1.router import router as v1_router
from listings_api.core.config import settings
from listings_api.core.telemetry import setup_telemetry

# bad listing or storage settings fail here instead of on the first request
get_normalizer_config()
get_photo_store()

app = FastAPI(title="Listings API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

# locally stored photos are served by the app itself
if settings.storage_backend == "local":
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    app.mount(settings.upload_public_path, StaticFiles(directory=settings.upload_dir), name="uploads")

setup_telemetry(app)
app.include_router(v1_router)
