import os
import logging
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
BASE_DIR = Path(os.getenv("COURIER_BASE_DIR", "./courier_data"))
KEYS_DIR = BASE_DIR / "keys"
DB_PATH = BASE_DIR / "courier.db"
PRIVATE_KEY_PATH = KEYS_DIR / "private.bin"

# ---------------------------------------------------------------------------
# Local identity
# ---------------------------------------------------------------------------
COURIER_PASSWORD = os.getenv("COURIER_PASSWORD", "")

# ---------------------------------------------------------------------------
# Crypto parameters (fixed, part of the envelope scheme)
# ---------------------------------------------------------------------------
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
CONTENT_KEY_SIZE = 32   # AES-256
NONCE_SIZE = 12         # 96-bit GCM nonce
PSS_SALT_LENGTH = 32

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
COURIER_PORT = int(os.getenv("COURIER_PORT", "8443"))
COURIER_HOST = os.getenv("COURIER_HOST", "0.0.0.0")
SSL_CERTFILE = os.getenv("SSL_CERTFILE", str(BASE_DIR / "ssl" / "cert.pem"))
SSL_KEYFILE = os.getenv("SSL_KEYFILE", str(BASE_DIR / "ssl" / "key.pem"))
TLS_COMMON_NAME = os.getenv("TLS_COMMON_NAME", "courier-relay")
TLS_CERT_DAYS = int(os.getenv("TLS_CERT_DAYS", "825"))

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------
MAX_MESSAGE_SIZE = int(os.getenv("MAX_MESSAGE_SIZE", str(64 * 1024)))  # 64 KB
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
DECRYPT_WORKERS = int(os.getenv("DECRYPT_WORKERS", "4"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s  %(name)-28s  %(levelname)-7s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def ensure_directories():
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    KEYS_DIR.mkdir(parents=True, exist_ok=True)
