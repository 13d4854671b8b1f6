import os

# --- Storage ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./mintgate.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# --- Claim tokens ---
CLAIM_SIGNING_SECRET = os.environ.get("CLAIM_SIGNING_SECRET", "dev_secret_change_me")
CLAIM_TTL_MINUTES = int(os.environ.get("CLAIM_TTL_MINUTES", "30"))

# --- Chain / sponsor ---
SUI_RPC_URL = os.environ.get("SUI_RPC_URL", "https://fullnode.testnet.sui.io:443")
CHAIN_TIMEOUT_SECONDS = float(os.environ.get("CHAIN_TIMEOUT_SECONDS", "10"))
SPONSOR_ADDRESS = os.environ.get("SPONSOR_ADDRESS") or None
SPONSOR_SIGNER_URL = os.environ.get("SPONSOR_SIGNER_URL", "http://127.0.0.1:9000/sign")

# --- HTTP surface ---
ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY") or None
MINT_RATE_LIMIT_PER_MIN = int(os.environ.get("MINT_RATE_LIMIT_PER_MIN", "10"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
