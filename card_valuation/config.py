"""Configuration for the Pokemon card identification and valuation pipeline."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent

# Paths
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", "data/card_valuation.db"))
DATABASE_PATH = BASE_DIR / DATABASE_PATH if not DATABASE_PATH.is_absolute() else DATABASE_PATH

IMAGE_STORE_DIR = Path(os.getenv("IMAGE_STORE_DIR", "data/images"))
IMAGE_STORE_DIR = BASE_DIR / IMAGE_STORE_DIR if not IMAGE_STORE_DIR.is_absolute() else IMAGE_STORE_DIR

KNOWN_NAMES_PATH = os.getenv("KNOWN_NAMES_PATH")  # Optional newline-separated card name dictionary

# Feature extraction
EDGE_GRADIENT_THRESHOLD = int(os.getenv("EDGE_GRADIENT_THRESHOLD", "30"))
MIN_EDGE_RATIO = 0.01
MAX_EDGE_RATIO = 0.5
CROP_PADDING_RATIO = 0.05
MIN_CARD_ASPECT = 0.5
MAX_CARD_ASPECT = 1.0
BLUR_NORMALIZER = float(os.getenv("BLUR_NORMALIZER", "500"))  # Laplacian variance mapped to blur_score=1.0
GLARE_PIXEL_THRESHOLD = 240
GLARE_FRACTION_THRESHOLD = 0.15
OCR_LANGUAGE = os.getenv("OCR_LANGUAGE", "eng")
OCR_PSM_MODE = int(os.getenv("OCR_PSM_MODE", "11"))  # 11 = sparse text, finds text anywhere on the card
EXTRACTION_WORKERS = int(os.getenv("EXTRACTION_WORKERS", "3"))

# LLM reasoning
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4096"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.15"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))
LLM_RETRY_BASE_DELAY = float(os.getenv("LLM_RETRY_BASE_DELAY", "1.0"))
LLM_RETRY_MAX_DELAY = float(os.getenv("LLM_RETRY_MAX_DELAY", "10.0"))
RETRY_JITTER_RATIO = float(os.getenv("RETRY_JITTER_RATIO", "0.2"))

# Fallback discounts (empirical, not derived)
FALLBACK_NAME_DISCOUNT = float(os.getenv("FALLBACK_NAME_DISCOUNT", "0.7"))
FALLBACK_OVERALL_DISCOUNT = float(os.getenv("FALLBACK_OVERALL_DISCOUNT", "0.5"))
FALLBACK_TOP_REGION = 0.3  # Blocks above this normalized top are name candidates

# Catalog (pokemontcg.io)
POKEMONTCG_API_URL = os.getenv("POKEMONTCG_API_URL", "https://api.pokemontcg.io/v2")
POKEMONTCG_API_KEY = os.getenv("POKEMONTCG_API_KEY")
CATALOG_TIMEOUT_SECONDS = float(os.getenv("CATALOG_TIMEOUT_SECONDS", "20"))
CATALOG_PAGE_SIZE = 50

# Pricing
PRICECHARTING_API_URL = os.getenv("PRICECHARTING_API_URL", "https://www.pricecharting.com/api")
PRICECHARTING_API_KEY = os.getenv("PRICECHARTING_API_KEY")
PRICE_CACHE_TTL_SECONDS = int(os.getenv("PRICE_CACHE_TTL_SECONDS", "3600"))
PRICE_WINDOW_DAYS = int(os.getenv("PRICE_WINDOW_DAYS", "14"))
PRICE_ADAPTER_TIMEOUT_SECONDS = float(os.getenv("PRICE_ADAPTER_TIMEOUT_SECONDS", "20"))
POKEMONTCG_REQUESTS_PER_MINUTE = int(os.getenv("POKEMONTCG_REQUESTS_PER_MINUTE", "20"))
PRICECHARTING_REQUESTS_PER_MINUTE = int(os.getenv("PRICECHARTING_REQUESTS_PER_MINUTE", "30"))
FX_RATES_TO_USD = {
    "USD": 1.0,
    "EUR": float(os.getenv("FX_EUR_USD", "1.08")),
}
DEFAULT_CONDITION = "Near Mint"
SUMMARY_MAX_TOKENS = int(os.getenv("SUMMARY_MAX_TOKENS", "600"))

# Authenticity
AUTHENTICITY_FAKE_THRESHOLD = float(os.getenv("AUTHENTICITY_FAKE_THRESHOLD", "0.5"))

# Workflow
STAGE_MAX_ATTEMPTS = int(os.getenv("STAGE_MAX_ATTEMPTS", "2"))
STAGE_RETRY_BASE_DELAY = float(os.getenv("STAGE_RETRY_BASE_DELAY", "0.5"))
BRANCH_TIMEOUT_SECONDS = float(os.getenv("BRANCH_TIMEOUT_SECONDS", "45"))

# API
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "10/minute")
MAX_CONCURRENT_IDENTIFICATIONS = int(os.getenv("MAX_CONCURRENT_IDENTIFICATIONS", "4"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Create directories
for dir_path in [DATABASE_PATH.parent, IMAGE_STORE_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)
