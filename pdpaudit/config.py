"""
Configuration for the PDP audit service.

All settings come from environment variables. Modulus parameters are read
once, at startup, from trusted configuration and never from a request.
"""

import os
from pathlib import Path
from typing import Dict, Optional

from .params import ModulusParameters

# ============================================================
# Environment Configuration
# ============================================================

# Public parameters
PARAMS_PATH = os.getenv("PDP_PARAMS_PATH", "config/params.json")
PARAMS_N = os.getenv("PDP_PARAMS_N", "")
PARAMS_G = os.getenv("PDP_PARAMS_G", "")
FIXED_TIME = os.getenv("PDP_FIXED_TIME", "0").lower() in ("1", "true", "yes")

# Ledger
LEDGER_BACKEND = os.getenv("PDP_LEDGER_BACKEND", "sqlite")  # sqlite|memory
LEDGER_DB_PATH = os.getenv("PDP_LEDGER_DB_PATH", "data/ledger.db")

# Block storage (storage node)
BLOCK_STORE = os.getenv("PDP_BLOCK_STORE", "filesystem")  # filesystem|memory
BLOCK_STORE_DIR = os.getenv("PDP_BLOCK_STORE_DIR", "storage")

# Audit rounds
SAMPLE_SIZE = int(os.getenv("PDP_SAMPLE_SIZE", "460"))
MAX_OPEN_CHALLENGES = int(os.getenv("PDP_MAX_OPEN_CHALLENGES", "10000"))

# Record signing
SIGNING_KEY_PATH = os.getenv("PDP_SIGNING_KEY_PATH", "")
TRUST_STORE_PATH = os.getenv("PDP_TRUST_STORE_PATH", "trust/trust_store.json")

# Logging
LOG_LEVEL = os.getenv("PDP_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("PDP_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("PDP_LOG_FILE") or None


# ============================================================
# Loaders
# ============================================================

def load_params(path: Optional[str] = None) -> ModulusParameters:
    """
    Load modulus parameters.

    ``PDP_PARAMS_N`` / ``PDP_PARAMS_G`` take precedence over the params
    file. Raises ``InvalidModulus`` on anything unusable, which should stop
    the process from starting.
    """
    if PARAMS_N and PARAMS_G:
        return ModulusParameters.from_hex(PARAMS_N, PARAMS_G, fixed_time=FIXED_TIME)
    return ModulusParameters.load(path or PARAMS_PATH, fixed_time=FIXED_TIME)


def validate_config() -> Dict[str, bool]:
    """
    Check that configured files exist.
    Returns dict of name -> exists.
    """
    paths = {}
    if not (PARAMS_N and PARAMS_G):
        paths["params"] = PARAMS_PATH
    if SIGNING_KEY_PATH:
        paths["signing_key"] = SIGNING_KEY_PATH
        paths["trust_store"] = TRUST_STORE_PATH
    return {name: Path(path).exists() for name, path in paths.items()}
