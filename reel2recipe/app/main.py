# reel2recipe/app/main.py
from __future__ import annotations

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reel2recipe import __version__
from reel2recipe.app.config import get_settings
from reel2recipe.app.routers.extract import router as extract_router

# Plain stdout logging (works for dev and containers)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

app = FastAPI(title="Reel2Recipe API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().FRONTEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(extract_router)


@app.get("/health")
def health():
    return {"ok": True}
