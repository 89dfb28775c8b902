import os
from pathlib import Path

SECRET_KEY = os.getenv("SECRET_KEY", "vinyl-store-secret-key-for-testing")
ALGORITHM = "HS256"
JWT_ISSUER = os.getenv("JWT_ISSUER", "vinyl-store-api")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "vinyl-store-users")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 10))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Hourly reset back to the seed data, opt-in
AUTO_RESET = os.getenv("VINYLSTORE_AUTO_RESET", "").lower() in ("1", "true", "yes")
CATALOG_CSV = os.getenv("CATALOG_CSV", str(Path(__file__).parent / "collection.csv"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8080))
