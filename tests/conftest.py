import os

os.environ.setdefault("STORE_DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import sessionmaker

from shop_service.db.database import get_db
from shop_service.db.init_db import init_db
from shop_service.db.models import Category, Product
from shop_service.main import app


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.catalog_cache.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
    app.state.catalog_cache.clear()


@pytest.fixture
def make_product(session_factory):
    async def _make(name="Pendant Lamp", price="12.50", quantity=5, images=None, **fields):
        async with session_factory() as session:
            product = Product(
                name=name,
                price=Decimal(price),
                quantity=quantity,
                images=images if images is not None else [f"/img/{name.lower().replace(' ', '-')}.jpg"],
                **fields,
            )
            session.add(product)
            await session.commit()
            return product.id
    return _make


@pytest.fixture
def make_category(session_factory):
    async def _make(name="Ceiling Lights", description=None):
        async with session_factory() as session:
            category = Category(name=name, description=description)
            session.add(category)
            await session.commit()
            return category.id
    return _make


@pytest.fixture
def set_stock(session_factory):
    async def _set(product_id, quantity=None, price=None):
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            product.quantity = quantity
            if price is not None:
                product.price = Decimal(price)
            await session.commit()
    return _set


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id):
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.quantity
    return _stock


@pytest.fixture
def count_rows(session_factory):
    async def _count(model):
        async with session_factory() as session:
            return await session.scalar(select(func.count()).select_from(model))
    return _count
