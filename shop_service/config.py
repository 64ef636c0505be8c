# shop_service/config.py
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

JWT_SECRET = os.getenv("JWT_SECRET", "your_secret_key")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Кэш каталога: размер и время жизни записей (секунды)
CATALOG_CACHE_SIZE = int(os.getenv("CATALOG_CACHE_SIZE", "128"))
CATALOG_CACHE_TTL = float(os.getenv("CATALOG_CACHE_TTL", "30"))
