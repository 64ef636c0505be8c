# shop_service/db/order_functions.py
import logging
import random
import string
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from shop_service.db.catalog_functions import first_image
from shop_service.db.models import CustomerInfo, Order, OrderItem, Product
from shop_service.db.schemas import (
    OrderItemRequest, OrderItemResponse, OrderResponse, ProductSummary, ShippingRequest, ShippingSnapshot,
)
from shop_service.errors import BadRequest, Conflict, NotFound, UnknownAddress, UnknownProduct
from shop_service.validation import clean_string, parse_quantity, required_string, to_decimal

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
REQUIRED_SHIPPING_FIELDS = ("name", "phone", "address_line1", "city", "state", "postal_code", "country")
_BASE36_DIGITS = string.digits + string.ascii_uppercase


@dataclass
class OrderLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int
    subtotal: Decimal


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def build_order_number(prefix: str = "ORD") -> str:
    """
    Человекочитаемый номер заказа: PREFIX-<время base36>-<случайная часть>.

    Уникальность не гарантируется самой схемой; create_order проверяет
    совпадения внутри транзакции, а столбец order_number уникален.
    """
    timestamp = to_base36(int(time.time() * 1000))
    random_part = to_base36(random.randrange(1_000_000)).rjust(4, "0")
    return f"{prefix}-{timestamp}-{random_part}"


async def resolve_shipping(db: AsyncSession, user_id: str, address_id: Optional[str],
                           shipping: Optional[ShippingRequest]) -> ShippingSnapshot:
    """Адрес доставки из адресной книги или из тела запроса. Ничего не записывает."""
    if address_id:
        result = await db.execute(
            select(CustomerInfo).filter(CustomerInfo.id == address_id, CustomerInfo.user_id == user_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise UnknownAddress("Address not found for this user")
        return ShippingSnapshot(
            name=record.name,
            email=record.email,
            phone=record.phone,
            address_line1=record.address_line1,
            address_line2=record.address_line2,
            city=record.city,
            state=record.state,
            postal_code=record.postal_code,
            country=record.country,
        )

    if shipping is None:
        raise BadRequest("Shipping details are required")

    for field in REQUIRED_SHIPPING_FIELDS:
        if not required_string(getattr(shipping, field)):
            raise BadRequest(f"Shipping field {to_camel(field)} is required")

    email = clean_string(shipping.email)
    return ShippingSnapshot(
        name=shipping.name.strip(),
        email=email.lower() if email else None,
        phone=shipping.phone.strip(),
        address_line1=shipping.address_line1.strip(),
        address_line2=clean_string(shipping.address_line2),
        city=shipping.city.strip(),
        state=shipping.state.strip(),
        postal_code=shipping.postal_code.strip(),
        country=shipping.country.strip(),
    )


async def _validate_lines(db: AsyncSession, items: List[OrderItemRequest]) -> List[OrderLine]:
    lines = []
    for item in items:
        product_id = clean_string(item.product_id)
        if not product_id:
            raise BadRequest("Each item must include productId")
        quantity = parse_quantity(
            item.quantity, default=1, minimum=1, message="Item quantity must be a positive number",
        )

        product = await db.get(Product, product_id)
        if not product:
            raise UnknownProduct(f"Product not found: {product_id}")

        price = to_decimal(product.price)
        if price is None:
            raise BadRequest(f"Product price invalid for {product.name}")

        stock = product.quantity
        if isinstance(stock, int) and not isinstance(stock, bool) and stock < quantity:
            logger.warning("Insufficient stock for %s: requested %d, available %d", product_id, quantity, stock)
            raise Conflict(f"Only {stock} left for {product.name}")

        lines.append(OrderLine(
            product_id=product.id,
            name=product.name,
            price=price,
            quantity=quantity,
            subtotal=price * quantity,
        ))
    return lines


async def _allocate_order_number(db: AsyncSession) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = build_order_number()
        taken = await db.scalar(select(Order.id).filter(Order.order_number == candidate))
        if taken is None:
            return candidate
        logger.warning("Order number collision: %s", candidate)
    raise Conflict("Could not allocate an order number, please retry")


async def _decrement_stock(db: AsyncSession, line: OrderLine) -> None:
    result = await db.execute(
        select(Product)
        .filter(Product.id == line.product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one()
    stock = product.quantity
    if isinstance(stock, bool) or not isinstance(stock, int):
        return
    # Остаток мог уменьшиться после проверки: другой заказ или повтор товара в этом заказе
    if stock < line.quantity:
        raise Conflict(f"Only {stock} left for {product.name}")
    product.quantity = max(0, stock - line.quantity)


# Создание заказа: проверка позиций, затем одна транзакция
async def create_order(db: AsyncSession, user_id: str, address_id: Optional[str],
                       shipping: Optional[ShippingRequest], items: Optional[List[OrderItemRequest]]) -> OrderResponse:
    if not items:
        raise BadRequest("At least one product item is required")

    shipping_info = await resolve_shipping(db, user_id, clean_string(address_id), shipping)
    lines = await _validate_lines(db, items)
    total = sum((line.subtotal for line in lines), Decimal("0"))

    try:
        order_number = await _allocate_order_number(db)
        order = Order(
            user_id=user_id,
            order_number=order_number,
            ship_name=shipping_info.name,
            ship_email=shipping_info.email,
            ship_phone=shipping_info.phone,
            ship_address_line1=shipping_info.address_line1,
            ship_address_line2=shipping_info.address_line2,
            ship_city=shipping_info.city,
            ship_state=shipping_info.state,
            ship_postal_code=shipping_info.postal_code,
            ship_country=shipping_info.country,
            total=total,
        )
        db.add(order)
        await db.flush()

        for line in lines:
            db.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                name=line.name,
                price=line.price,
                quantity=line.quantity,
                subtotal=line.subtotal,
            ))
            await _decrement_stock(db, line)

        order_id = order.id
        await db.commit()
    except Conflict:
        await db.rollback()
        raise
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Order for %s rolled back", user_id)
        raise

    logger.info("Order %s created for %s, total %s", order_number, user_id, total)
    return await get_order(db, order_id)


def serialize_order(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        shipping=ShippingSnapshot(
            name=order.ship_name,
            email=order.ship_email,
            phone=order.ship_phone,
            address_line1=order.ship_address_line1,
            address_line2=order.ship_address_line2,
            city=order.ship_city,
            state=order.ship_state,
            postal_code=order.ship_postal_code,
            country=order.ship_country,
        ),
        total=float(order.total),
        created_at=order.created_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                product_name=item.name,
                price=float(item.price),
                quantity=item.quantity,
                subtotal=float(item.subtotal),
                image=first_image(item.product),
                product=ProductSummary(
                    id=item.product.id,
                    name=item.product.name,
                    images=list(item.product.images or []),
                ) if item.product is not None else None,
            )
            for item in order.items
        ],
    )


def _order_query():
    return (
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .execution_options(populate_existing=True)
    )


# Получение заказа с его элементами
async def get_order(db: AsyncSession, order_id: str, user_id: Optional[str] = None) -> OrderResponse:
    result = await db.execute(_order_query().filter(Order.id == order_id))
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    if user_id and order.user_id != user_id:
        raise NotFound("Order not found for this user")
    return serialize_order(order)


# Все заказы пользователя, новые первыми
async def list_orders(db: AsyncSession, user_id: str) -> List[OrderResponse]:
    result = await db.execute(_order_query().filter(Order.user_id == user_id).order_by(Order.created_at.desc()))
    return [serialize_order(order) for order in result.scalars().all()]
