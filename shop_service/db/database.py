# shop_service/db/database.py
import os
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

DATABASE_URL = os.getenv("STORE_DB_URL") or (
    f"postgresql+asyncpg://{os.getenv('STORE_DB_USER', 'postgres')}:{os.getenv('STORE_DB_PASSWORD', 'postgres')}"
    f"@{os.getenv('STORE_DB_HOST', 'localhost')}:{os.getenv('STORE_DB_PORT', '5432')}/{os.getenv('STORE_DB_NAME', 'store')}"
)

# Настройка асинхронного движка
engine = create_async_engine(DATABASE_URL, echo=os.getenv("STORE_DB_ECHO", "false").lower() == "true")

# Асинхронная фабрика сессий
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Базовый класс для моделей
Base = declarative_base()

# Генератор сессий
async def get_db():
    async with SessionLocal() as session:
        yield session
