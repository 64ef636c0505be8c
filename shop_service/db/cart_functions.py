# shop_service/db/cart_functions.py
import hashlib
import logging
import re
from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from shop_service.auth_utils import AccountRef, Guest
from shop_service.db.catalog_functions import available_stock, first_image
from shop_service.db.models import Cart, CartItem, Product, User
from shop_service.db.schemas import CartAdjustment, CartLine, CartView, StepAdjustment
from shop_service.errors import Conflict, NotFound, UnknownProduct
from shop_service.validation import MAX_QUANTITY, to_decimal

logger = logging.getLogger(__name__)


def placeholder_email(user_id: str, disambiguate: bool = False) -> str:
    safe_local_part = re.sub(r"[^a-zA-Z0-9._-]", "_", user_id)
    if disambiguate:
        # Разные id могут давать одинаковую локальную часть (user+1, user_1)
        digest = hashlib.sha1(user_id.encode("utf-8")).hexdigest()[:8]
        safe_local_part = f"{safe_local_part}.{digest}"
    return f"{safe_local_part}@guest.local"


def _owner_filter(account: AccountRef):
    if isinstance(account, Guest):
        return Cart.guest_token == account.token
    return Cart.user_id == account.user_id


async def _load_cart(db: AsyncSession, criterion) -> Optional[Cart]:
    result = await db.execute(
        select(Cart)
        .filter(criterion)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# Получение корзины пользователя вместе с товарами
async def find_cart(db: AsyncSession, account: AccountRef) -> Optional[Cart]:
    return await _load_cart(db, _owner_filter(account))


async def _ensure_user(db: AsyncSession, user_id: str) -> User:
    """Гарантирует наличие записи пользователя, на которую ссылается корзина."""
    user = await db.get(User, user_id)
    if user:
        return user

    for disambiguate in (False, True):
        email = placeholder_email(user_id, disambiguate=disambiguate)
        db.add(User(id=user_id, email=email, is_verified=False))
        try:
            await db.commit()
        except IntegrityError:
            # Запись уже создана параллельным запросом или email занят другим id
            await db.rollback()
            user = await db.get(User, user_id)
            if user:
                return user
            logger.info("Placeholder email %s is taken, cart owner %s", email, user_id)
            continue
        return await db.get(User, user_id)
    raise Conflict("Could not register cart owner, please retry")


async def get_or_create_cart(db: AsyncSession, account: AccountRef) -> Cart:
    cart = await find_cart(db, account)
    if cart:
        return cart

    criterion = _owner_filter(account)
    if isinstance(account, Guest):
        cart = Cart(guest_token=account.token)
    else:
        await _ensure_user(db, account.user_id)
        cart = Cart(user_id=account.user_id)

    db.add(cart)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _load_cart(db, criterion)
        if existing is None:
            raise
        return existing
    logger.info("Created cart for %s", account.key)
    return await _load_cart(db, criterion)


def serialize_cart(cart: Optional[Cart], user_id: str) -> CartView:
    """
    Представление корзины для клиента.

    Количество каждой позиции ограничивается текущим остатком товара,
    позиции с нулевым итоговым количеством не попадают в ответ. Записи в
    базе при этом не меняются.
    """
    if cart is None:
        return CartView(user_id=user_id, items=[], total=0)

    lines = []
    total = Decimal("0")
    for item in cart.items:
        product = item.product
        unit_price = to_decimal(item.price)
        if unit_price is None and product is not None:
            unit_price = to_decimal(product.price)
        if unit_price is None:
            unit_price = Decimal("0")

        stock = available_stock(product)
        quantity = item.quantity if stock is None else min(item.quantity, stock)
        if quantity is None or quantity <= 0:
            continue

        lines.append(CartLine(
            product_id=item.product_id,
            name=item.name or (product.name if product is not None else None) or "Product",
            price=float(unit_price),
            quantity=quantity,
            image=first_image(product),
            max_quantity=stock,
        ))
        total += unit_price * quantity

    return CartView(user_id=user_id, items=lines, total=float(total))


async def _locked_cart_item(db: AsyncSession, cart_id: int, product_id: str) -> Optional[CartItem]:
    result = await db.execute(
        select(CartItem)
        .filter(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _upsert_cart_item(db: AsyncSession, cart_id: int, product_id: str, requested: int) -> int:
    product = await db.get(Product, product_id, populate_existing=True)
    if product is None:
        raise UnknownProduct("Invalid product specified")
    stock = available_stock(product)

    item = await _locked_cart_item(db, cart_id, product_id)
    desired = min((item.quantity if item else 0) + requested, MAX_QUANTITY)
    final_quantity = min(desired, stock) if stock is not None else desired
    if final_quantity <= 0:
        raise Conflict("Product is out of stock")

    if item:
        item.quantity = final_quantity
    else:
        db.add(CartItem(
            cart_id=cart_id,
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=final_quantity,
        ))
    await db.commit()
    return final_quantity


# Добавление товара в корзину
async def add_item(db: AsyncSession, account: AccountRef, product_id: str, quantity: int = 1) -> CartView:
    product = await db.get(Product, product_id)
    if product is None:
        raise UnknownProduct("Invalid product specified")

    stock = available_stock(product)
    if stock is not None and stock <= 0:
        logger.warning("Rejected add of out-of-stock product %s for %s", product_id, account.key)
        raise Conflict("Product is out of stock")

    cart = await get_or_create_cart(db, account)
    cart_id = cart.id
    try:
        final_quantity = await _upsert_cart_item(db, cart_id, product_id, quantity)
    except IntegrityError:
        # Параллельный запрос успел вставить ту же позицию: повторяем как обновление
        await db.rollback()
        final_quantity = await _upsert_cart_item(db, cart_id, product_id, quantity)

    logger.info("Cart %s: product %s quantity set to %d", account.key, product_id, final_quantity)
    return serialize_cart(await _load_cart(db, Cart.id == cart_id), account.key)


# Изменение количества товара в корзине
async def update_item(db: AsyncSession, account: AccountRef, product_id: str, adjustment: CartAdjustment) -> CartView:
    cart = await find_cart(db, account)
    if not cart:
        raise NotFound("Cart not found")
    cart_id = cart.id

    item = await _locked_cart_item(db, cart_id, product_id)
    if not item:
        raise NotFound("Product not found in cart")

    product = await db.get(Product, product_id, populate_existing=True)
    stock = available_stock(product)

    if isinstance(adjustment, StepAdjustment):
        new_quantity = min(item.quantity + adjustment.delta, MAX_QUANTITY)
    else:
        new_quantity = adjustment.quantity
    if stock is not None:
        new_quantity = min(new_quantity, stock)

    if new_quantity <= 0:
        await db.delete(item)
        logger.info("Cart %s: product %s removed", account.key, product_id)
    else:
        item.quantity = new_quantity
        logger.info("Cart %s: product %s quantity set to %d", account.key, product_id, new_quantity)
    await db.commit()

    return serialize_cart(await _load_cart(db, Cart.id == cart_id), account.key)
