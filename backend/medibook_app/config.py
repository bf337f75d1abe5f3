import os
from dotenv import load_dotenv

load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD") or None

# Token signing
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# In production, replace with specific origins
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")]

SESSION_TTL = 24 * 60 * 60  # 24 hours
NOTIFICATION_TTL = 7 * 24 * 60 * 60  # 7 days

SESSION_CLEANUP_INTERVAL = 60 * 60
WS_PING_INTERVAL = 30
WS_CLEANUP_INTERVAL = 5 * 60
WS_MAX_INACTIVITY = 5 * 60
WS_STATS_INTERVAL = 10 * 60
