from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(REPO_ROOT / ".env")

# Hosted data platform (auth, tables, storage)
SUPABASE_URL = (os.environ.get("SUPABASE_URL") or "").strip().rstrip("/")
SUPABASE_ANON_KEY = (os.environ.get("SUPABASE_ANON_KEY") or "").strip()
SUPABASE_SERVICE_KEY = (os.environ.get("SUPABASE_SERVICE_KEY") or "").strip()
SUPABASE_JWT_SECRET = (os.environ.get("SUPABASE_JWT_SECRET") or "").strip()
STORE_TIMEOUT_SEC = float(os.environ.get("STORE_TIMEOUT_SEC", "20"))

ASSETS_TABLE = "assets"
LOGS_TABLE = "logs"
PROFILES_TABLE = "profiles"
CONTRACTS_BUCKET = "contracts"
PHOTOS_BUCKET = "site-photos"
SIGNED_URL_TTL = int(os.environ.get("SIGNED_URL_TTL", str(60 * 10)))
LOG_LIMIT = int(os.environ.get("LOG_LIMIT", "200"))

# Geocoding (Nominatim)
NOMINATIM_URL = (os.environ.get("NOMINATIM_URL") or "https://nominatim.openstreetmap.org/search").strip()
GEOCODE_USER_AGENT = os.environ.get(
    "GEOCODE_USER_AGENT",
    "EkinOfficePanel/1.0 (contact: info@ekinotomasyon.com.tr)",
)
GEOCODE_TIMEOUT_SEC = float(os.environ.get("GEOCODE_TIMEOUT_SEC", "10"))
GEOCODE_MIN_QUERY = 3
GEOCODE_PROXY_LIMIT = 6
GEOCODE_COUNTRY = (os.environ.get("GEOCODE_COUNTRY") or "tr").strip().lower()

# Forms
UID_PREFIX = os.environ.get("UID_PREFIX", "EKINOTOMASYON-2026-06-")
MAX_CONTRACT_SIZE = 20 * 1024 * 1024

# Map widget; Ankara when nothing is selected
DEFAULT_MAP_CENTER = (39.9208, 32.8541)
DEFAULT_MAP_ZOOM = 12
SELECTED_MAP_ZOOM = 16

# Web
SESSION_SECRET = os.environ.get("SESSION_SECRET") or ""
TEMPLATES_DIR = (REPO_ROOT / "templates").resolve()
STATIC_DIR = (REPO_ROOT / "static").resolve()
