"""
VNPay Merchant API -- Configuration

All configuration values with sensible defaults.
Override via environment variables or the service's systemd unit.
"""

import os


def _env_flag(name, default="false"):
  return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- API Settings ---
API_VERSION = "0.1.0"
API_HOST = os.environ.get("VNPAY_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("VNPAY_API_PORT", "8280"))

# --- VNPay merchant terminal ---
# SECURITY: No hardcoded defaults -- must be set via environment variable or systemd unit
VNPAY_TMN_CODE = os.environ.get("VNPAY_TMN_CODE", "")
VNPAY_SECURE_SECRET = os.environ.get("VNPAY_SECURE_SECRET", "")

# --- VNPay gateway ---
VNPAY_HOST = os.environ.get("VNPAY_HOST", "https://sandbox.vnpayment.vn")
VNPAY_HASH_ALGORITHM = os.environ.get("VNPAY_HASH_ALGORITHM", "SHA512")
VNPAY_TEST_MODE = _env_flag("VNPAY_TEST_MODE")
VNPAY_LOCALE = os.environ.get("VNPAY_LOCALE", "vn")
VNPAY_HTTP_TIMEOUT_SECONDS = float(os.environ.get("VNPAY_HTTP_TIMEOUT_SECONDS", "30"))

# Where VNPay sends the buyer after payment (can be overridden per payment)
VNPAY_RETURN_URL = os.environ.get(
  "VNPAY_RETURN_URL", "http://127.0.0.1:8280/api/v1/payments/vnpay/return"
)
