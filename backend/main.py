import logging
import math
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))


load_dotenv()

def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "marketplace_db"),
    user=os.getenv("DB_USER", "marketplace_user"),
    password=os.getenv("DB_PASSWORD", "marketplace_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

logger = logging.getLogger("marketplace")


def get_conn():
    return psycopg2.connect(**DB_CFG)


try:
    from backend import app_context
    from backend.app.catalog import StaticCatalogProvider
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from app.catalog import StaticCatalogProvider  # type: ignore[no-redef]

app_context.configure(
    get_conn=get_conn,
    catalog_provider=StaticCatalogProvider(),
)

try:
    from backend.app.routes import cart as cart_routes
    from backend.app.routes import catalog as catalog_routes
    from backend.app.routes import payers as payer_routes
    from backend.app.routes import purchases as purchase_routes
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from app.routes import cart as cart_routes  # type: ignore[no-redef]
    from app.routes import catalog as catalog_routes  # type: ignore[no-redef]
    from app.routes import payers as payer_routes  # type: ignore[no-redef]
    from app.routes import purchases as purchase_routes  # type: ignore[no-redef]

app = FastAPI(title="AI Tools Marketplace API")

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(catalog_routes.router)
app.include_router(payer_routes.router)
app.include_router(cart_routes.router)
app.include_router(purchase_routes.router)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def log_startup() -> None:
    logger.info("Marketplace API started (database %s@%s/%s)", DB_CFG["user"], DB_CFG["host"], DB_CFG["dbname"])
