from decimal import Decimal

import pytest
from sqlalchemy.future import select

from shop_service.auth_utils import Authenticated, Guest
from shop_service.db.cart_functions import add_item, find_cart, get_or_create_cart, placeholder_email, serialize_cart
from shop_service.db.models import Cart, CartItem, User
from shop_service.errors import Conflict


async def test_add_then_clamp_then_decrease_until_removed(client, make_product):
    product_id = await make_product(price="12.50", quantity=5)

    response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": 3})
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Product added to cart"
    assert body["cart"]["items"][0]["quantity"] == 3
    assert body["cart"]["total"] == 37.5

    response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": 4})
    cart = response.json()["cart"]
    assert cart["items"] == [{
        "productId": product_id,
        "name": "Pendant Lamp",
        "price": 12.5,
        "quantity": 5,
        "image": "/img/pendant-lamp.jpg",
        "maxQuantity": 5,
    }]
    assert cart["total"] == 62.5

    for expected in (4, 3, 2, 1):
        response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "action": "decrease"})
        assert response.status_code == 200
        assert response.json()["cart"]["items"][0]["quantity"] == expected

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "action": "decrease"})
    assert response.json() == {"message": "Cart updated", "cart": {"userId": "guest_abc", "items": [], "total": 0}}

    response = await client.get("/cart", params={"userId": "guest_abc"})
    assert all(item["productId"] != product_id for item in response.json()["cart"]["items"])


async def test_out_of_stock_product_is_rejected_without_writes(client, make_product, count_rows):
    product_id = await make_product(quantity=0)

    response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})

    assert response.status_code == 409
    assert response.json() == {"message": "Product is out of stock"}
    assert await count_rows(CartItem) == 0
    assert await count_rows(Cart) == 0


async def test_unknown_product_is_a_bad_request(client):
    response = await client.post("/cart", json={"userId": "guest_abc", "productId": "missing"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid product specified"


@pytest.mark.parametrize("payload, message", [
    ({"productId": "p1"}, "userId is required"),
    ({"userId": "guest_abc"}, "productId is required"),
    ({"userId": "guest_abc", "productId": "p1", "quantity": "lots"}, "quantity must be a positive number"),
    ({"userId": "guest_abc", "productId": "p1", "quantity": 0}, "quantity must be a positive number"),
])
async def test_add_validation(client, payload, message):
    response = await client.post("/cart", json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == message


async def test_invalid_json_body(client):
    response = await client.post("/cart", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid JSON payload"


async def test_quantity_string_is_accepted(client, make_product):
    product_id = await make_product(quantity=None)

    response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": "2"})

    item = response.json()["cart"]["items"][0]
    assert item["quantity"] == 2
    assert item["maxQuantity"] is None


async def test_unlimited_stock_is_never_clamped(client, make_product):
    product_id = await make_product(quantity=None)
    for _ in range(3):
        await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": 40})

    response = await client.get("/cart", params={"userId": "guest_abc"})
    assert response.json()["cart"]["items"][0]["quantity"] == 120


async def test_huge_quantity_is_a_bad_request(client, make_product, count_rows):
    product_id = await make_product(quantity=None)

    response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": "1e40"})

    assert response.status_code == 400
    assert await count_rows(CartItem) == 0


async def test_merged_quantity_stays_within_column_range(client, make_product):
    product_id = await make_product(quantity=None)
    limit = 2 ** 31 - 1
    for _ in range(2):
        response = await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": limit})
        assert response.status_code == 201
    assert response.json()["cart"]["items"][0]["quantity"] == limit

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "action": "increase"})
    assert response.json()["cart"]["items"][0]["quantity"] == limit


async def test_get_cart_without_user_id(client):
    response = await client.get("/cart")
    assert response.status_code == 400
    assert response.json()["message"] == "userId query parameter is required"


async def test_get_cart_for_unknown_user_is_empty_and_creates_nothing(client, count_rows):
    response = await client.get("/cart", params={"userId": "nobody"})
    assert response.status_code == 200
    assert response.json() == {"cart": {"userId": "nobody", "items": [], "total": 0}}
    assert await count_rows(Cart) == 0
    assert await count_rows(User) == 0


async def test_get_cart_is_idempotent(client, make_product):
    first = await make_product(name="Wall Sconce", price="20.00", quantity=3)
    second = await make_product(name="Floor Lamp", price="5.25", quantity=None)
    await client.post("/cart", json={"userId": "guest_abc", "productId": first, "quantity": 2})
    await client.post("/cart", json={"userId": "guest_abc", "productId": second})

    one = await client.get("/cart", params={"userId": "guest_abc"})
    two = await client.get("/cart", params={"userId": "guest_abc"})

    assert one.json() == two.json()
    assert one.json()["cart"]["total"] == 45.25


async def test_read_clamps_to_current_stock_without_touching_storage(client, make_product, set_stock, db):
    product_id = await make_product(quantity=5)
    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": 4})

    await set_stock(product_id, quantity=2)
    response = await client.get("/cart", params={"userId": "guest_abc"})
    item = response.json()["cart"]["items"][0]
    assert item["quantity"] == 2
    assert item["maxQuantity"] == 2

    await set_stock(product_id, quantity=0)
    response = await client.get("/cart", params={"userId": "guest_abc"})
    assert response.json()["cart"]["items"] == []

    stored = (await db.execute(select(CartItem))).scalar_one()
    assert stored.quantity == 4


async def test_cart_keeps_price_snapshot(client, make_product, set_stock):
    product_id = await make_product(price="12.50", quantity=5)
    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})

    await set_stock(product_id, quantity=5, price="99.00")

    response = await client.get("/cart", params={"userId": "guest_abc"})
    assert response.json()["cart"]["items"][0]["price"] == 12.5


async def test_update_with_explicit_quantity(client, make_product):
    product_id = await make_product(quantity=5)
    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": 9})
    assert response.json()["cart"]["items"][0]["quantity"] == 5

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "quantity": "0"})
    assert response.json()["cart"]["items"] == []


async def test_increase_is_capped_by_stock(client, make_product):
    product_id = await make_product(quantity=1)
    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "action": "increase"})
    assert response.json()["cart"]["items"][0]["quantity"] == 1


@pytest.mark.parametrize("extra", [
    {},
    {"action": "increase", "quantity": 2},
    {"action": "remove"},
    {"quantity": -3},
])
async def test_update_rejects_bad_combinations(client, make_product, extra):
    product_id = await make_product()
    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, **extra})
    assert response.status_code == 400


async def test_update_missing_cart_or_item(client, make_product):
    product_id = await make_product()
    other_id = await make_product(name="Table Lamp")

    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": product_id, "action": "increase"})
    assert response.status_code == 404
    assert response.json()["message"] == "Cart not found"

    await client.post("/cart", json={"userId": "guest_abc", "productId": product_id})
    response = await client.patch("/cart", json={"userId": "guest_abc", "productId": other_id, "action": "increase"})
    assert response.status_code == 404
    assert response.json()["message"] == "Product not found in cart"


async def test_guest_cart_does_not_create_user_rows(db, make_product, count_rows):
    product_id = await make_product()

    await add_item(db, Guest(token="guest_xyz"), product_id, 1)

    assert await count_rows(User) == 0
    cart = (await db.execute(select(Cart))).scalar_one()
    assert cart.guest_token == "guest_xyz"
    assert cart.user_id is None


async def test_authenticated_cart_gets_placeholder_user(db):
    cart = await get_or_create_cart(db, Authenticated(user_id="user-1"))

    user = await db.get(User, "user-1")
    assert user.email == "user-1@guest.local"
    assert user.is_verified is False
    assert cart.user_id == "user-1"

    again = await get_or_create_cart(db, Authenticated(user_id="user-1"))
    assert again.id == cart.id


async def test_placeholder_email_collision_keeps_carts_apart(db):
    db.add(User(id="existing", email=placeholder_email("a/b")))
    await db.commit()

    cart = await get_or_create_cart(db, Authenticated(user_id="a/b"))
    assert cart.user_id == "a/b"
    user = await db.get(User, "a/b")
    assert user.email == placeholder_email("a/b", disambiguate=True)
    assert user.email != placeholder_email("a/b")

    again = await get_or_create_cart(db, Authenticated(user_id="a/b"))
    assert again.id == cart.id


async def test_users_with_colliding_ids_get_separate_carts(client, make_product):
    product_id = await make_product(quantity=None)

    response = await client.post("/cart", json={"userId": "user+1", "productId": product_id, "quantity": 1})
    assert response.status_code == 201
    response = await client.post("/cart", json={"userId": "user_1", "productId": product_id, "quantity": 2})
    assert response.status_code == 201
    assert response.json()["cart"]["items"][0]["quantity"] == 2

    first = (await client.get("/cart", params={"userId": "user+1"})).json()["cart"]
    second = (await client.get("/cart", params={"userId": "user_1"})).json()["cart"]
    assert first["items"][0]["quantity"] == 1
    assert second["items"][0]["quantity"] == 2

    response = await client.patch("/cart", json={"userId": "user_1", "productId": product_id, "action": "decrease"})
    assert response.status_code == 200
    assert response.json()["cart"]["items"][0]["quantity"] == 1
    first = (await client.get("/cart", params={"userId": "user+1"})).json()["cart"]
    assert first["items"][0]["quantity"] == 1


async def test_add_item_service_conflict(db, make_product):
    product_id = await make_product(quantity=0)
    with pytest.raises(Conflict):
        await add_item(db, Guest(token="guest_1"), product_id, 1)


async def test_summed_quantity_never_exceeds_stock(db, make_product):
    product_id = await make_product(quantity=7)
    account = Authenticated(user_id="user-9")

    for requested in (3, 1, 5, 2, 9):
        view = await add_item(db, account, product_id, requested)
        assert sum(line.quantity for line in view.items if line.product_id == product_id) <= 7

    view = serialize_cart(await find_cart(db, account), account.key)
    assert view.items[0].quantity == 7
    assert view.total == float(Decimal("12.50") * 7)


async def test_serialize_falls_back_to_product_price(db, make_product):
    product_id = await make_product(price="8.00", quantity=None)
    account = Guest(token="guest_price")
    await add_item(db, account, product_id, 2)

    item = (await db.execute(select(CartItem))).scalar_one()
    item.price = None
    item.name = None
    await db.commit()

    view = serialize_cart(await find_cart(db, account), account.key)
    assert view.items[0].price == 8.0
    assert view.items[0].name == "Pendant Lamp"
    assert view.total == 16.0
