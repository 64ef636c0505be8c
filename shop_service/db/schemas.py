# shop_service/db/schemas.py
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from shop_service.errors import BadRequest
from shop_service.validation import parse_quantity

# Количество может прийти числом или строкой; разбирается в parse_quantity
QuantityValue = Optional[Union[int, float, str]]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# Нормализованные изменения позиции корзины (PATCH /cart)
@dataclass(frozen=True)
class StepAdjustment:
    delta: int


@dataclass(frozen=True)
class SetQuantity:
    quantity: int


CartAdjustment = Union[StepAdjustment, SetQuantity]

ACTION_DELTAS = {"increase": 1, "decrease": -1}


# Схемы запросов
class CartAddRequest(CamelModel):
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    quantity: QuantityValue = None


class CartUpdateRequest(CamelModel):
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    action: Optional[str] = None
    quantity: QuantityValue = None

    def to_adjustment(self) -> CartAdjustment:
        has_quantity = self.quantity is not None and not (isinstance(self.quantity, str) and not self.quantity.strip())
        if (self.action is None) == (not has_quantity):
            raise BadRequest("Provide exactly one of action or quantity")
        if self.action is not None:
            if self.action not in ACTION_DELTAS:
                raise BadRequest("action must be increase or decrease")
            return StepAdjustment(delta=ACTION_DELTAS[self.action])
        quantity = parse_quantity(
            self.quantity, default=None, minimum=0,
            message="quantity must be zero or a positive number",
        )
        return SetQuantity(quantity=quantity)


class ShippingRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class OrderItemRequest(CamelModel):
    product_id: Optional[str] = None
    quantity: QuantityValue = None


class OrderCreateRequest(CamelModel):
    user_id: Optional[str] = None
    address_id: Optional[str] = None
    shipping: Optional[ShippingRequest] = None
    items: Optional[List[OrderItemRequest]] = None


class CustomerInfoCreate(CamelModel):
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = False


# Схемы ответов: корзина
class CartLine(CamelModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image: Optional[str] = None
    max_quantity: Optional[int] = None


class CartView(CamelModel):
    user_id: str
    items: List[CartLine] = []
    total: float = 0


class CartEnvelope(CamelModel):
    cart: CartView


class CartMutationResponse(CamelModel):
    message: str
    cart: CartView


# Схемы ответов: заказы
class ShippingSnapshot(CamelModel):
    name: str
    email: Optional[str] = None
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str


class ProductSummary(CamelModel):
    id: str
    name: str
    images: List[str] = []


class OrderItemResponse(CamelModel):
    id: int
    product_id: str
    product_name: str
    price: float
    quantity: int
    subtotal: float
    image: Optional[str] = None
    product: Optional[ProductSummary] = None


class OrderResponse(CamelModel):
    id: str
    order_number: str
    user_id: str
    shipping: ShippingSnapshot
    total: float
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class OrderEnvelope(CamelModel):
    order: OrderResponse


class OrderCreatedResponse(CamelModel):
    message: str
    order: OrderResponse


class OrderListResponse(CamelModel):
    user_id: str
    orders: List[OrderResponse]


# Схемы ответов: адресная книга
class CustomerInfoResponse(CamelModel):
    id: str
    user_id: str
    name: str
    email: Optional[str] = None
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CustomerInfoList(CamelModel):
    user_id: str
    addresses: List[CustomerInfoResponse]


class CustomerInfoCreated(CamelModel):
    message: str
    address: CustomerInfoResponse


# Схемы ответов: каталог
class CategorySchema(CamelModel):
    id: str
    name: str
    description: Optional[str] = None


class ProductSchema(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    quantity: Optional[int] = None
    images: List[str] = []
    category: Optional[CategorySchema] = None
    created_at: Optional[datetime] = None


class ProductListItem(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    quantity: Optional[int] = None
    thumbnail: Optional[str] = None
    category: Optional[CategorySchema] = None
    created_at: Optional[datetime] = None


class ProductListMeta(CamelModel):
    total: int
    limit: int


class ProductEnvelope(CamelModel):
    product: ProductSchema


class ProductListResponse(CamelModel):
    products: List[ProductListItem]
    meta: ProductListMeta


class CategoryListResponse(CamelModel):
    categories: List[CategorySchema]
