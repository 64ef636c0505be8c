# shop_service/main.py
import logging
from typing import AsyncGenerator, Optional, Union
from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from shop_service.auth_utils import resolve_account
from shop_service.cache import TTLCache
from shop_service.config import CATALOG_CACHE_SIZE, CATALOG_CACHE_TTL, CORS_ORIGINS, LOG_LEVEL
from shop_service.db.cart_functions import add_item, find_cart, serialize_cart, update_item
from shop_service.db.catalog_functions import get_product, list_categories, list_products
from shop_service.db.customer_functions import create_customer_info, list_customer_info, serialize_customer_info
from shop_service.db.database import get_db
from shop_service.db.init_db import init_db
from shop_service.db.order_functions import create_order, get_order, list_orders
from shop_service.db.schemas import (
    CartAddRequest, CartEnvelope, CartMutationResponse, CartUpdateRequest,
    CategoryListResponse, CustomerInfoCreate, CustomerInfoCreated, CustomerInfoList,
    OrderCreateRequest, OrderCreatedResponse, OrderEnvelope, OrderListResponse,
    ProductEnvelope, ProductListResponse,
)
from shop_service.errors import BadRequest
from shop_service.validation import clean_string, parse_quantity, required_string

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("shop_service")

# Токен необязателен: без него работает гостевая корзина
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


async def lifespan(app: FastAPI) -> AsyncGenerator:
    await init_db()
    yield


app = FastAPI(lifespan=lifespan)
app.state.catalog_cache = TTLCache(capacity=CATALOG_CACHE_SIZE, ttl=CATALOG_CACHE_TTL)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_catalog_cache(request: Request) -> TTLCache:
    return request.app.state.catalog_cache


def require_user_param(user_id: Optional[str], token: Optional[str]) -> None:
    if not token and not required_string(user_id):
        raise BadRequest("userId query parameter is required")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors or any(error.get("type") == "json_invalid" for error in errors):
        return JSONResponse(status_code=400, content={"message": "Invalid JSON payload"})
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
    message = f"{location}: {error.get('msg')}" if location else error.get("msg")
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(SQLAlchemyError)
async def storage_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


@app.get("/cart", response_model=CartEnvelope)
async def read_cart(user_id: Optional[str] = Query(default=None, alias="userId"),
                    token: Optional[str] = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)):
    require_user_param(user_id, token)
    account = resolve_account(user_id, token)
    cart = await find_cart(db, account)
    return CartEnvelope(cart=serialize_cart(cart, account.key))


# Добавление товара в корзину
@app.post("/cart", response_model=CartMutationResponse, status_code=201)
async def add_to_cart(body: CartAddRequest, token: Optional[str] = Depends(oauth2_scheme),
                      db: AsyncSession = Depends(get_db)):
    account = resolve_account(body.user_id, token)
    product_id = clean_string(body.product_id)
    if not product_id:
        raise BadRequest("productId is required")
    quantity = parse_quantity(body.quantity, default=1, minimum=1, message="quantity must be a positive number")

    cart = await add_item(db, account, product_id, quantity)
    return CartMutationResponse(message="Product added to cart", cart=cart)


# Изменение количества товара в корзине
@app.patch("/cart", response_model=CartMutationResponse)
async def update_cart(body: CartUpdateRequest, token: Optional[str] = Depends(oauth2_scheme),
                      db: AsyncSession = Depends(get_db)):
    account = resolve_account(body.user_id, token)
    product_id = clean_string(body.product_id)
    if not product_id:
        raise BadRequest("productId is required")
    adjustment = body.to_adjustment()

    cart = await update_item(db, account, product_id, adjustment)
    return CartMutationResponse(message="Cart updated", cart=cart)


@app.post("/orders", response_model=OrderCreatedResponse, status_code=201)
async def place_order(body: OrderCreateRequest, token: Optional[str] = Depends(oauth2_scheme),
                      db: AsyncSession = Depends(get_db), cache: TTLCache = Depends(get_catalog_cache)):
    account = resolve_account(body.user_id, token)
    order = await create_order(db, account.key, body.address_id, body.shipping, body.items)
    # Остатки изменились: списки каталога в кэше устарели
    cache.clear()
    return OrderCreatedResponse(message="Order created", order=order)


@app.get("/orders", response_model=Union[OrderEnvelope, OrderListResponse])
async def read_orders(user_id: Optional[str] = Query(default=None, alias="userId"),
                      order_id: Optional[str] = Query(default=None, alias="orderId"),
                      token: Optional[str] = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)):
    order_id = clean_string(order_id)
    if order_id:
        owner = None
        if token or required_string(user_id):
            owner = resolve_account(user_id, token).key
        return OrderEnvelope(order=await get_order(db, order_id, owner))

    require_user_param(user_id, token)
    account = resolve_account(user_id, token)
    return OrderListResponse(user_id=account.key, orders=await list_orders(db, account.key))


@app.get("/customer-info", response_model=CustomerInfoList)
async def read_customer_info(user_id: Optional[str] = Query(default=None, alias="userId"),
                             token: Optional[str] = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)):
    require_user_param(user_id, token)
    account = resolve_account(user_id, token)
    entries = await list_customer_info(db, account.key)
    return CustomerInfoList(user_id=account.key, addresses=[serialize_customer_info(entry) for entry in entries])


@app.post("/customer-info", response_model=CustomerInfoCreated, status_code=201)
async def save_customer_info(body: CustomerInfoCreate, token: Optional[str] = Depends(oauth2_scheme),
                             db: AsyncSession = Depends(get_db)):
    account = resolve_account(body.user_id, token)
    record = await create_customer_info(db, account.key, body)
    return CustomerInfoCreated(message="Customer info saved", address=serialize_customer_info(record))


@app.get("/products", response_model=Union[ProductEnvelope, ProductListResponse])
async def read_products(product_id: Optional[str] = Query(default=None, alias="id"),
                        search: Optional[str] = None, q: Optional[str] = None, limit: Optional[int] = None,
                        db: AsyncSession = Depends(get_db), cache: TTLCache = Depends(get_catalog_cache)):
    product_id = clean_string(product_id)
    if product_id:
        return ProductEnvelope(product=await get_product(db, product_id))
    return await list_products(db, search=search or q, limit=limit, cache=cache)


@app.get("/categories", response_model=CategoryListResponse)
async def read_categories(db: AsyncSession = Depends(get_db), cache: TTLCache = Depends(get_catalog_cache)):
    return CategoryListResponse(categories=await list_categories(db, cache=cache))


@app.get("/")
async def health_check():
    """Health check endpoint."""
    return {"status": "shop_service running"}
