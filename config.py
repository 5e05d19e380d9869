from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/gtfs.db")

# GTFS Static
GTFS_STATIC_URL: str = os.getenv("GTFS_STATIC_URL", "")
GTFS_REFRESH_HOURS: int = int(os.getenv("GTFS_REFRESH_HOURS", "24"))

# GTFS-Realtime (trip updates only). Exactly one source is used:
# GTFS_RT_URL wins when both are set.
GTFS_RT_URL: str = os.getenv("GTFS_RT_URL", "")
GTFS_RT_PATH: str = os.getenv("GTFS_RT_PATH", "")
GTFS_RT_POLL_SECONDS: int = int(os.getenv("GTFS_RT_POLL_SECONDS", "15"))
GTFS_RT_HEADERS_JSON: str = os.getenv("GTFS_RT_HEADERS_JSON", "")  # e.g. {"Authorization": "..."}

# Service day starts at this local hour (trips after midnight belong to the previous day)
SERVICE_DAY_START_HOUR: int = int(os.getenv("SERVICE_DAY_START_HOUR", "3"))
# IANA zone for "now"; empty = process local time
LOCAL_TIMEZONE: str = os.getenv("LOCAL_TIMEZONE", "")

# API
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:5174").split(",")
    if o.strip()
]
INGEST_API_KEY: str = os.getenv("INGEST_API_KEY", "")

# Departures
DEFAULT_DEPARTURE_LIMIT: int = int(os.getenv("DEFAULT_DEPARTURE_LIMIT", "3"))
NEARBY_RADIUS_METRES: float = float(os.getenv("NEARBY_RADIUS_METRES", "800"))
