# shop_service/db/models.py
import uuid
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Numeric, JSON,
    UniqueConstraint, CheckConstraint,
)
from datetime import datetime
from sqlalchemy.orm import relationship
from shop_service.db.database import Base


def generate_id():
    return uuid.uuid4().hex


# Модель пользователя
class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_id)
    email = Column(String, unique=True, index=True, nullable=False)
    mobile = Column(String, nullable=True)
    is_verified = Column(Boolean, default=False)  # Подтвердил ли пользователь email
    created_at = Column(DateTime, default=datetime.utcnow)

    cart = relationship("Cart", back_populates="user", uselist=False)


class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, index=True, nullable=False)
    description = Column(String, nullable=True)

    # Связь с товарами
    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=generate_id)
    name = Column(String, index=True, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=True)  # NULL - остаток не ограничен
    images = Column(JSON, default=list)  # Упорядоченный список URL изображений
    category_id = Column(String, ForeignKey("categories.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    category = relationship("Category", back_populates="products")


class Cart(Base):
    __tablename__ = "carts"
    __table_args__ = (
        CheckConstraint("(user_id IS NULL) != (guest_token IS NULL)", name="ck_carts_single_owner"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=True)
    guest_token = Column(String, unique=True, nullable=True)  # Корзина гостя без учетной записи
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="cart")
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id")


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    # Снимок названия и цены на момент добавления
    name = Column(String, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")


# Адресная книга пользователя
class CustomerInfo(Base):
    __tablename__ = "customer_info"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=False)
    address_line1 = Column(String, nullable=False)
    address_line2 = Column(String, nullable=True)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    postal_code = Column(String, nullable=False)
    country = Column(String, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Модель заказов
class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, index=True, nullable=False)
    order_number = Column(String, unique=True, nullable=False)
    # Снимок адреса доставки, а не ссылка на адресную книгу
    ship_name = Column(String, nullable=False)
    ship_email = Column(String, nullable=True)
    ship_phone = Column(String, nullable=False)
    ship_address_line1 = Column(String, nullable=False)
    ship_address_line2 = Column(String, nullable=True)
    ship_city = Column(String, nullable=False)
    ship_state = Column(String, nullable=False)
    ship_postal_code = Column(String, nullable=False)
    ship_country = Column(String, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


# Модель элементов в заказе
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
