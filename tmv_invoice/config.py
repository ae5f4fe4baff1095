# tmv_invoice/config.py

import os
import logging

logger = logging.getLogger(__name__)

# --- Application ---
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Business Details (printed on invoices and share messages) ---
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Threm Multilinks Venture")
BUSINESS_ADDRESS = os.getenv("BUSINESS_ADDRESS", "")
BUSINESS_PHONE = os.getenv("BUSINESS_PHONE", "")
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₦") # Naira sign
# Built-in PDF and image fonts have no Naira glyph
EXPORT_CURRENCY_SYMBOL = os.getenv("EXPORT_CURRENCY_SYMBOL", "NGN ")
INVOICE_NUMBER_PREFIX = os.getenv("INVOICE_NUMBER_PREFIX", "TMV")

# --- Invoice Store Configuration ---
# "file" keeps the invoice collection in a local JSON file, "minio" in a single
# MinIO object, "memory" only for the lifetime of the process.
INVOICE_STORE_BACKEND = os.getenv("INVOICE_STORE_BACKEND", "file").lower()
INVOICE_STORE_SLOT = os.getenv("INVOICE_STORE_SLOT", "threm_invoices")
INVOICE_STORE_PATH = os.getenv("INVOICE_STORE_PATH", os.path.join("data", f"{INVOICE_STORE_SLOT}.json"))

# --- MinIO (invoice slot when INVOICE_STORE_BACKEND=minio, shared exports) ---
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_SECURE = os.getenv("MINIO_SECURE", "False").lower() == "true"

# Bucket holding the invoice collection object and bucket for shared exports
MINIO_STORE_BUCKET = os.getenv("MINIO_STORE_BUCKET", "invoice-store")
MINIO_EXPORT_BUCKET = os.getenv("MINIO_EXPORT_BUCKET", "invoice-exports")
SHARE_LINK_EXPIRY_HOURS = int(os.getenv("SHARE_LINK_EXPIRY_HOURS", "24"))

# --- Parser Model Configuration ---
QWEN2_AUDIO_MODEL_NAME = os.getenv("QWEN2_AUDIO_MODEL_NAME", "Qwen/Qwen2-Audio-7B-Instruct")
LOAD_MODEL_ON_STARTUP = os.getenv("LOAD_MODEL_ON_STARTUP", "True").lower() == "true"
PARSE_MAX_NEW_TOKENS = int(os.getenv("PARSE_MAX_NEW_TOKENS", "1024"))
# Seconds a request waits for a parse; 0 waits indefinitely
PARSE_TIMEOUT_SECONDS = float(os.getenv("PARSE_TIMEOUT_SECONDS", "120"))

# --- Default Cement Prices (used in the parser prompt and to autofill missing prices) ---
cement_price_list = {
    "dangote": {"description": "Dangote Cement 42.5R", "unit_price": 9000.00},
    "bua": {"description": "BUA Cement 42.5R", "unit_price": 8500.00},
    "lafarge": {"description": "Lafarge Elephant Cement", "unit_price": 8800.00},
    "elephant": {"description": "Lafarge Elephant Cement", "unit_price": 8800.00},
    "supaset": {"description": "Lafarge Supaset Cement", "unit_price": 9200.00},
}

logger.info(
    "Configuration Loaded: Environment=%s, Store Backend=%s, MinIO Endpoint=%s",
    ENVIRONMENT, INVOICE_STORE_BACKEND, MINIO_ENDPOINT,
)
