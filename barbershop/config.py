import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./barbershop.db")

# Supabase Auth - access tokens are HS256 JWTs signed with the project JWT secret
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
if not SUPABASE_JWT_SECRET:
    import warnings

    warnings.warn(
        "SUPABASE_JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    SUPABASE_JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
JWT_ALGORITHM = "HS256"

# Evolution API (WhatsApp gateway)
EVOLUTION_API_URL = os.getenv("EVOLUTION_API_URL", "http://localhost:8080").rstrip("/")
EVOLUTION_API_KEY = os.getenv("EVOLUTION_API_KEY")
EVOLUTION_TIMEOUT_SECONDS = float(os.getenv("EVOLUTION_TIMEOUT_SECONDS", "30"))
# Public URL the gateway posts events to (our /functions/v1/evolution-webhook endpoint)
EVOLUTION_WEBHOOK_URL = os.getenv("EVOLUTION_WEBHOOK_URL")
# Shared token the gateway must send back in the webhook "apikey" field
EVOLUTION_WEBHOOK_TOKEN = os.getenv("EVOLUTION_WEBHOOK_TOKEN")

# WhatsApp connection wizard polling
WHATSAPP_CONNECT_TIMEOUT_SECONDS = int(os.getenv("WHATSAPP_CONNECT_TIMEOUT_SECONDS", "120"))
WHATSAPP_CONNECT_POLL_SECONDS = int(os.getenv("WHATSAPP_CONNECT_POLL_SECONDS", "5"))

# Redis (cache, rate limiting, arq). Set REDIS_ENABLED=false to run memory-only.
REDIS_ENABLED = os.getenv("REDIS_ENABLED", "true").lower() == "true"

# Financial report cache
COMMISSION_CACHE_TTL = int(os.getenv("COMMISSION_CACHE_TTL", "300"))
COMMISSION_LAST_GOOD_TTL = int(os.getenv("COMMISSION_LAST_GOOD_TTL", "86400"))

# Frontend base URL (CORS default)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
