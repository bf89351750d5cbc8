import mongomock
import pytest
from bson import ObjectId

from cart import CartService
from conftest import login, make_user
from errors import BadRequest
from orders import OrderService
from schemas import OrderCreate

SHIPPING = {
    "customer_name": "Ann",
    "customer_phone": "+998901112233",
    "region": "Tashkent",
    "address": "X",
}


@pytest.fixture
def cart(db, mailer):
    return CartService(db, mailer)


def fill_cart(cart, user, variants):
    uid = str(user["_id"])
    cart.add_item_to_cart(uid, variants[0]["id"], 2)
    cart.add_item_to_cart(uid, variants[1]["id"], 1)
    return uid


def test_checkout_totals_and_empties_cart(cart, db, user, variants):
    uid = fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(uid, SHIPPING)

    assert order["total_price"] == pytest.approx(12.5 * 2 + 15.0)
    assert order["status"] == "PENDING"
    assert order["payment_status"] == "UNPAID"
    assert sorted((i["variant_id"], i["quantity"], i["price"]) for i in order["items"]) == sorted([
        (variants[0]["id"], 2, 12.5),
        (variants[1]["id"], 1, 15.0),
    ])
    assert db["cart_item"].count_documents({}) == 0
    assert db["order"].count_documents({"user_id": uid}) == 1


def test_checkout_uses_price_at_call_time(cart, db, user, variants):
    uid = str(user["_id"])
    cart.add_item_to_cart(uid, variants[0]["id"], 2)
    db["variant"].update_one({"product_id": variants[0]["product_id"], "color": "white"}, {"$set": {"price": 20.0}})
    order = cart.convert_cart_to_order(uid, SHIPPING)
    assert order["total_price"] == pytest.approx(40.0)

    # Later price changes leave the order snapshot alone.
    db["variant"].update_many({}, {"$set": {"price": 99.0}})
    stored = db["order"].find_one({})
    assert stored["items"][0]["price"] == 20.0


def test_example_scenario(cart, db, user, variants):
    uid = str(user["_id"])
    vid = variants[0]["id"]
    cart.add_item_to_cart(uid, vid, 2)
    cart.add_item_to_cart(uid, vid, 3)
    assert cart.get_my_cart(uid)["items"][0]["quantity"] == 5

    order = cart.convert_cart_to_order(uid, SHIPPING)
    assert len(order["items"]) == 1
    line = order["items"][0]
    assert (line["variant_id"], line["quantity"], line["price"]) == (vid, 5, 12.5)
    assert order["customer_name"] == "Ann"
    assert order["region"] == "Tashkent"
    assert cart.get_my_cart(uid)["items"] == []


def test_empty_cart_cannot_be_checked_out(cart, db, user):
    with pytest.raises(BadRequest):
        cart.convert_cart_to_order(str(user["_id"]), SHIPPING)
    assert db["order"].count_documents({}) == 0


def test_failed_transaction_leaves_cart_intact(cart, db, user, variants, monkeypatch):
    uid = fill_cart(cart, user, variants)

    def boom(self, *args, **kwargs):
        raise RuntimeError("write failed")

    monkeypatch.setattr(mongomock.Collection, "delete_many", boom)
    with pytest.raises(RuntimeError):
        cart.convert_cart_to_order(uid, SHIPPING)
    monkeypatch.undo()

    assert db["order"].count_documents({}) == 0
    assert sorted(i["quantity"] for i in db["cart_item"].find()) == [1, 2]


def test_mail_failure_does_not_fail_checkout(cart, db, user, variants, mailer):
    mailer.fail = True
    uid = fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(uid, SHIPPING)
    assert order["id"]
    assert db["order"].count_documents({}) == 1
    assert db["cart_item"].count_documents({}) == 0


def test_unexpected_mail_error_does_not_fail_checkout(cart, db, user, variants, mailer, monkeypatch):
    def broken_send(to, subject, text, html=None):
        raise UnicodeEncodeError("ascii", "pässword", 1, 2, "ordinal not in range(128)")

    monkeypatch.setattr(mailer, "send", broken_send)
    uid = fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(uid, SHIPPING)
    assert db["order"].count_documents({"_id": ObjectId(order["id"])}) == 1
    assert db["cart_item"].count_documents({}) == 0


def test_checkout_sends_confirmation(cart, user, variants, mailer):
    uid = fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(uid, SHIPPING)
    assert len(mailer.sent) == 1
    message = mailer.sent[0]
    assert message["to"] == "ann@example.com"
    assert order["id"] in message["text"]
    assert "40.00" in message["html"]


def test_checkout_with_removed_variant(cart, db, user, variants):
    uid = fill_cart(cart, user, variants)
    db["variant"].delete_many({"color": "black"})
    with pytest.raises(BadRequest):
        cart.convert_cart_to_order(uid, SHIPPING)
    assert db["cart_item"].count_documents({}) == 2


def test_checkout_route_defaults_shipping(client, user_headers, variants):
    client.post("/cart/items", json={"variant_id": variants[0]["id"], "quantity": 1}, headers=user_headers)
    res = client.post(
        "/orders/checkout",
        json={"customer_name": "Ann", "customer_phone": "+998901112233", "delivery_address": "Y"},
        headers=user_headers,
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["region"] == "Unknown"
    assert body["address"] == "Y"


def test_checkout_route_rejects_bad_phone(client, user_headers, variants):
    client.post("/cart/items", json={"variant_id": variants[0]["id"], "quantity": 1}, headers=user_headers)
    res = client.post("/cart/checkout", json={**SHIPPING, "customer_phone": "call me"}, headers=user_headers)
    assert res.status_code == 422


def test_create_order_computes_total(db, mailer, user, variants):
    service = OrderService(db, mailer)
    payload = OrderCreate(**SHIPPING, items=[
        {"variant_id": variants[0]["id"], "quantity": 2},
        {"variant_id": variants[1]["id"], "quantity": 1, "price": 10.0},
    ])
    order = service.create_order(str(user["_id"]), payload)
    assert order["total_price"] == pytest.approx(35.0)
    assert order["user"]["email"] == "ann@example.com"


def test_users_see_only_their_orders(client, db, cart, user, user_headers, variants):
    fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(str(user["_id"]), SHIPPING)

    make_user(db, "bob@example.com")
    bob = login(client, "bob@example.com")
    assert client.get("/orders", headers=bob).json() == {"data": []}
    assert client.get(f"/orders/{order['id']}", headers=bob).status_code == 403

    mine = client.get("/orders", headers=user_headers).json()["data"]
    assert [o["id"] for o in mine] == [order["id"]]
    assert client.get(f"/orders/{order['id']}", headers=user_headers).status_code == 200


def test_admin_manages_orders(client, cart, user, admin_headers, user_headers, variants):
    fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(str(user["_id"]), SHIPPING)

    listing = client.get("/orders", params={"status": "PENDING"}, headers=admin_headers).json()
    assert listing["meta"]["total"] == 1
    assert listing["data"][0]["user"]["email"] == "ann@example.com"

    res = client.patch(f"/orders/{order['id']}/status", json={"status": "SHIPPED"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "SHIPPED"

    assert client.patch(f"/orders/{order['id']}/status", json={"status": "SHIPPED"}, headers=user_headers).status_code == 403
    assert client.delete(f"/orders/{order['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=admin_headers).status_code == 404


def test_order_items(client, db, cart, user, admin_headers, user_headers, variants):
    fill_cart(cart, user, variants)
    order = cart.convert_cart_to_order(str(user["_id"]), SHIPPING)

    res = client.post(
        "/order-items",
        json={"order_id": order["id"], "variant_id": variants[0]["id"], "quantity": 1},
        headers=admin_headers,
    )
    assert res.status_code == 201
    item_id = res.json()["id"]
    assert res.json()["price"] == 12.5

    assert client.get(f"/order-items/{item_id}", headers=user_headers).status_code == 200
    res = client.patch(f"/order-items/{item_id}", json={"final_print_file": "https://cdn.example.com/print.pdf"}, headers=admin_headers)
    assert res.json()["final_print_file"] == "https://cdn.example.com/print.pdf"

    items = client.get("/order-items", params={"order_id": order["id"]}, headers=admin_headers).json()
    assert len(items) == 3

    assert client.delete(f"/order-items/{item_id}", headers=admin_headers).status_code == 200
    assert len(db["order"].find_one({})["items"]) == 2
    assert client.get(f"/order-items/{item_id}", headers=admin_headers).status_code == 404
