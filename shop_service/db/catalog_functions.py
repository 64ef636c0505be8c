# shop_service/db/catalog_functions.py
import logging
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from shop_service.cache import TTLCache
from shop_service.db.models import Product, Category
from shop_service.db.schemas import (
    CategorySchema, ProductSchema, ProductListItem, ProductListMeta, ProductListResponse,
)
from shop_service.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_LIMIT = 1000
MAX_PRODUCT_LIMIT = 2000


def available_stock(product: Optional[Product]) -> Optional[int]:
    """Остаток товара; None означает, что количество не ограничено."""
    if product is None:
        return None
    quantity = product.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return None
    return max(0, quantity)


def first_image(product: Optional[Product]) -> Optional[str]:
    if product is None or not isinstance(product.images, list) or not product.images:
        return None
    return product.images[0]


def resolve_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_PRODUCT_LIMIT
    return min(limit, MAX_PRODUCT_LIMIT)


def _category_schema(category: Optional[Category]) -> Optional[CategorySchema]:
    if category is None:
        return None
    return CategorySchema(id=category.id, name=category.name, description=category.description)


def _product_fields(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": float(product.price),
        "quantity": product.quantity,
        "category": _category_schema(product.category),
        "created_at": product.created_at,
    }


# Получение одного продукта (без кэша: остатки должны быть актуальными)
async def get_product(db: AsyncSession, product_id: str) -> ProductSchema:
    result = await db.execute(
        select(Product)
        .filter(Product.id == product_id)
        .options(selectinload(Product.category))
    )
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound("Product not found")
    return ProductSchema(images=list(product.images or []), **_product_fields(product))


# Получение списка продуктов с поиском по названию и описанию
async def list_products(db: AsyncSession, search: Optional[str] = None, limit: Optional[int] = None,
                        cache: Optional[TTLCache] = None) -> ProductListResponse:
    search = search.strip() if search else None
    resolved_limit = resolve_limit(limit)
    cache_key = ("products", search.lower() if search else None, resolved_limit)
    if cache is not None:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    query = select(Product).options(selectinload(Product.category))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    result = await db.execute(query.order_by(Product.created_at.desc()).limit(resolved_limit))
    products = result.scalars().all()

    response = ProductListResponse(
        products=[ProductListItem(thumbnail=first_image(product), **_product_fields(product)) for product in products],
        meta=ProductListMeta(total=len(products), limit=resolved_limit),
    )
    if cache is not None:
        cache.set(cache_key, response)
    logger.debug("Loaded %d products (search=%r, limit=%d)", len(products), search, resolved_limit)
    return response


async def list_categories(db: AsyncSession, cache: Optional[TTLCache] = None) -> list:
    if cache is not None:
        cached = cache.get("categories")
        if cached is not None:
            return cached

    result = await db.execute(select(Category).order_by(Category.name))
    categories = [_category_schema(category) for category in result.scalars().all()]

    if cache is not None:
        cache.set("categories", categories)
    return categories
