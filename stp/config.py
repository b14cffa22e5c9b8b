"""
Configuration module for STP.

Centralizes all configuration with environment variable support.
Protocol objects read these as defaults; every value can also be passed
explicitly to the constructors.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("STP_ENV", "dev")  # dev|stage|prod

# Party addresses used to build stp:// URLs
VENDOR_HOST = os.getenv("STP_VENDOR_HOST", "localhost:3000")
PROVIDER_HOST = os.getenv("STP_PROVIDER_HOST", "localhost:8000")

# Outbound requests (seconds). No retries are ever made.
HTTP_TIMEOUT = float(os.getenv("STP_HTTP_TIMEOUT", "10"))

# How long the PIN endpoint suspends waiting for the Provider's Hello
PIN_WAIT_TIMEOUT = float(os.getenv("STP_PIN_WAIT_TIMEOUT", "300"))

# How long an initiator waits for a busy transaction id before giving up
EXCHANGE_LOCK_TIMEOUT = float(os.getenv("STP_EXCHANGE_LOCK_TIMEOUT", "30"))

# Provider accepts MODIFY revisions without operator approval
AUTO_ACCEPT_MODIFY = os.getenv("STP_AUTO_ACCEPT_MODIFY", "true").lower() in ("1", "true", "yes")

# Token lifetime and protocol sizes
TOKEN_VALIDITY_DAYS = int(os.getenv("STP_TOKEN_VALIDITY_DAYS", "365"))
CHALLENGE_BYTES = int(os.getenv("STP_CHALLENGE_BYTES", "30"))
REPLAY_CACHE_SIZE = int(os.getenv("STP_REPLAY_CACHE_SIZE", "1024"))

# Key material
VENDOR_KEY_PATH = os.getenv("STP_VENDOR_KEY_PATH", "secrets/vendor_signing_key.json")
PROVIDER_KEY_PATH = os.getenv("STP_PROVIDER_KEY_PATH", "secrets/provider_signing_key.json")
TRUST_STORE_PATH = os.getenv("STP_TRUST_STORE_PATH", "trust/trust_store.json")
VENDOR_KID = os.getenv("STP_VENDOR_KID", "stp-vendor-01")
PROVIDER_KID = os.getenv("STP_PROVIDER_KID", "stp-provider-01")

# Party identity
BANK_NAME = os.getenv("STP_BANK_NAME", "STP_Example_Provider")
BIC = os.getenv("STP_BIC", "STPEXPROV")
VENDOR_NAME = os.getenv("STP_VENDOR_NAME", "STP Example Vendor")
VENDOR_ADDRESS = os.getenv("STP_VENDOR_ADDRESS", "Washington, Imaginary st. 123")
VENDOR_LOGO_URL = os.getenv("STP_VENDOR_LOGO_URL", "")

# Logging
LOG_LEVEL = os.getenv("STP_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("STP_LOG_JSON", "true").lower() in ("1", "true", "yes")


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that all key files exist.
    Returns dict of name -> exists.
    """
    paths = {
        "vendor_key": VENDOR_KEY_PATH,
        "provider_key": PROVIDER_KEY_PATH,
        "trust_store": TRUST_STORE_PATH,
    }
    return {name: Path(path).exists() for name, path in paths.items()}


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("STP_DEBUG", "").lower() in ("1", "true", "yes")
