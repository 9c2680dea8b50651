"""
Configuration module for the AssetGate service.

Centralizes all configuration with environment variable support
and startup validation.
"""

import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("ASSETGATE_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("ASSETGATE_DB_PATH", "data/assetgate.db")
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))

# Logging
LOG_LEVEL = os.getenv("ASSETGATE_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("ASSETGATE_LOG_JSON", "true").lower() in ("1", "true", "yes")

# Rate limits (requests per minute, per caller)
SUBMIT_RPM = int(os.getenv("SUBMIT_RPM", "30"))
TRANSFER_RPM = int(os.getenv("TRANSFER_RPM", "120"))

# Keys
TRUST_STORE_PATH = os.getenv("TRUST_STORE_PATH", "trust/trust_store.json")
RECEIPT_KEY_PATH = os.getenv("RECEIPT_KEY_PATH", "secrets/receipt_signing_key.json")

# Caller tokens: 24h lifetime, small allowance for clock skew
CALLER_TOKEN_TTL_SECONDS = int(os.getenv("CALLER_TOKEN_TTL_SECONDS", "86400"))
MAX_CLOCK_SKEW_SECONDS = int(os.getenv("MAX_CLOCK_SKEW_SECONDS", "120"))

# Documents
BLOB_BACKEND = os.getenv("BLOB_BACKEND", "ipfs")  # ipfs|memory
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://127.0.0.1:5001")
ARWEAVE_UPLOAD_URL = os.getenv("ARWEAVE_UPLOAD_URL", "")
ARWEAVE_GATEWAY_URL = os.getenv("ARWEAVE_GATEWAY_URL", "https://arweave.net")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
ALLOWED_UPLOAD_TYPES = ("image/jpeg", "image/png", "application/pdf")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# Chain
CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "")

# Audit log backend
AUDIT_LOG_BACKEND = os.getenv("AUDIT_LOG_BACKEND", "sqlite_hash_chain")  # sqlite_hash_chain|s3_object_lock
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "assetgate/audit/")
S3_RETENTION_DAYS = int(os.getenv("S3_RETENTION_DAYS", "2555"))


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that all required configuration files exist.
    Returns dict of name -> exists.
    """
    paths = {
        "trust_store": TRUST_STORE_PATH,
        "receipt_signing_key": RECEIPT_KEY_PATH,
    }
    checks = {name: Path(path).exists() for name, path in paths.items()}
    if AUDIT_LOG_BACKEND == "s3_object_lock":
        checks["s3_bucket"] = bool(S3_BUCKET)
    if BLOB_BACKEND == "ipfs":
        checks["ipfs_api_url"] = bool(IPFS_API_URL)
    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    return ENV == "prod"
