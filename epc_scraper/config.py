"""Configuration settings for the EPC parts scraper."""
import os
from pathlib import Path

from dotenv import load_dotenv

from .exceptions import ConfigError

# Directory paths
PROJECT_ROOT = Path(__file__).parent.parent

# Vehicle identity comes from .env (written by hand or by a bootstrap step)
load_dotenv(PROJECT_ROOT / ".env", override=False)

# Source site
SITE_URL = os.environ.get("EPC_SITE_URL", "https://mitsubishi.epc-data.com")
VEHICLE_SLUG = os.environ.get("VEHICLE_SLUG", "delica_space_gear")
FRAME_NAME = os.environ.get("FRAME_NAME", "pd6w")
TRIM_CODE = os.environ.get("TRIM_CODE", "hseue9")
FRAME_NO = os.environ.get("FRAME_NO", "")

# Output locations
OUTPUT_DIR = PROJECT_ROOT / "data"
CSV_OUTPUT = OUTPUT_DIR / "csv" / "parts_catalogue.csv"
PARQUET_OUTPUT = OUTPUT_DIR / "parquet" / "parts_catalogue.parquet"
SQLITE_PATH = OUTPUT_DIR / "sqlite" / "epc_catalogue.sqlite"
IMAGES_DIR = OUTPUT_DIR / "images"

# Politeness / adaptive delay (seconds)
INITIAL_DELAY = 3.0
MIN_DELAY = 1.0
MAX_DELAY = 120.0
BACKOFF_MULTIPLIER = 1.5
SUCCESS_DECAY = 0.9

# HTTP settings
REQUEST_TIMEOUT = 30
MAX_RETRIES = 3
RETRY_DELAY = 2

# Repair pass re-fetch attempts on HTTP 429
REPAIR_FETCH_ATTEMPTS = 3


def vehicle_path() -> str:
    """URL path prefix identifying the vehicle/trim, e.g. /delica_space_gear/pd6w/hseue9/."""
    return f"/{VEHICLE_SLUG}/{FRAME_NAME}/{TRIM_CODE}/"


def base_url() -> str:
    """Index page of the vehicle catalogue (the crawl seed)."""
    return SITE_URL.rstrip("/") + vehicle_path()


def require_vehicle():
    """Fail early when the frame number needed by every request is missing."""
    missing = [
        name for name, value in (("FRAME_NAME", FRAME_NAME),
                                 ("TRIM_CODE", TRIM_CODE),
                                 ("FRAME_NO", FRAME_NO)) if not value
    ]
    if missing:
        raise ConfigError(
            f"Missing required settings: {', '.join(missing)} (set them in the environment or .env)"
        )


def set_output_dir(output_dir: Path):
    """Point every derived output path at a new base directory."""
    global OUTPUT_DIR, CSV_OUTPUT, PARQUET_OUTPUT, SQLITE_PATH, IMAGES_DIR
    OUTPUT_DIR = Path(output_dir)
    CSV_OUTPUT = OUTPUT_DIR / "csv" / "parts_catalogue.csv"
    PARQUET_OUTPUT = OUTPUT_DIR / "parquet" / "parts_catalogue.parquet"
    SQLITE_PATH = OUTPUT_DIR / "sqlite" / "epc_catalogue.sqlite"
    IMAGES_DIR = OUTPUT_DIR / "images"


# Ensure directories exist
def ensure_directories():
    """Create necessary directories if they don't exist."""
    dirs_to_create = [
        OUTPUT_DIR / "csv",
        OUTPUT_DIR / "parquet",
        OUTPUT_DIR / "sqlite",
        IMAGES_DIR,
    ]

    for dir_path in dirs_to_create:
        dir_path.mkdir(parents=True, exist_ok=True)
