import pytest

from cart import CartService
from conftest import make_user
from errors import NotFound


@pytest.fixture
def service(db, mailer):
    return CartService(db, mailer)


def test_get_cart_creates_empty_cart_once(service, db, user):
    uid = str(user["_id"])
    first = service.get_my_cart(uid)
    second = service.get_my_cart(uid)
    assert first["items"] == []
    assert first["id"] == second["id"]
    assert db["cart"].count_documents({"user_id": uid}) == 1


def test_adding_same_variant_merges_quantity(service, db, user, variants):
    uid = str(user["_id"])
    vid = variants[0]["id"]
    service.add_item_to_cart(uid, vid, 2)
    item = service.add_item_to_cart(uid, vid, 3)
    assert item["quantity"] == 5
    assert db["cart_item"].count_documents({}) == 1

    cart = service.get_my_cart(uid)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["variant"]["product"]["name"] == "Classic Tee"


def test_merge_keeps_first_design(service, user, variants):
    uid = str(user["_id"])
    vid = variants[0]["id"]
    service.add_item_to_cart(uid, vid, 1, {"front_preview_url": "https://cdn.example.com/a.png"})
    item = service.add_item_to_cart(uid, vid, 1, {"front_preview_url": "https://cdn.example.com/b.png"})
    assert item["front_preview_url"] == "https://cdn.example.com/a.png"
    assert item["quantity"] == 2


def test_add_unknown_variant(service, user):
    with pytest.raises(NotFound):
        service.add_item_to_cart(str(user["_id"]), "64b000000000000000000000", 1)
    with pytest.raises(NotFound):
        service.add_item_to_cart(str(user["_id"]), "not-an-id", 1)


@pytest.mark.parametrize("quantity", [0, -5])
def test_update_to_non_positive_quantity_deletes(service, db, user, variants, quantity):
    uid = str(user["_id"])
    item = service.add_item_to_cart(uid, variants[0]["id"], 2)
    res = service.update_cart_item(uid, item["id"], quantity)
    assert res == {"id": item["id"], "deleted": True}
    assert db["cart_item"].count_documents({}) == 0


def test_update_quantity(service, user, variants):
    uid = str(user["_id"])
    item = service.add_item_to_cart(uid, variants[0]["id"], 2)
    assert service.update_cart_item(uid, item["id"], 7)["quantity"] == 7


def test_update_item_of_another_user_is_not_found(service, db, user, variants):
    uid = str(user["_id"])
    item = service.add_item_to_cart(uid, variants[0]["id"], 2)
    other = make_user(db, "bob@example.com")
    with pytest.raises(NotFound):
        service.update_cart_item(str(other["_id"]), item["id"], 1)
    with pytest.raises(NotFound):
        service.remove_item(str(other["_id"]), item["id"])
    assert db["cart_item"].find_one({})["quantity"] == 2


def test_clear_cart(service, db, user, variants):
    uid = str(user["_id"])
    service.add_item_to_cart(uid, variants[0]["id"], 1)
    service.add_item_to_cart(uid, variants[1]["id"], 1)
    service.clear_cart(uid)
    assert service.get_my_cart(uid)["items"] == []


def test_cart_routes(client, user_headers, variants):
    res = client.post("/cart/items", json={"variant_id": variants[0]["id"], "quantity": 2}, headers=user_headers)
    assert res.status_code == 201
    item_id = res.json()["id"]

    res = client.patch(f"/cart/items/{item_id}", json={"quantity": 4}, headers=user_headers)
    assert res.json()["quantity"] == 4

    cart = client.get("/cart", headers=user_headers).json()
    assert [i["quantity"] for i in cart["items"]] == [4]

    res = client.delete(f"/cart/items/{item_id}", headers=user_headers)
    assert res.json()["deleted"] is True
    assert client.get("/cart", headers=user_headers).json()["items"] == []


def test_cart_requires_login(client):
    assert client.get("/cart").status_code == 401


def test_add_item_rejects_zero_quantity(client, user_headers, variants):
    res = client.post("/cart/items", json={"variant_id": variants[0]["id"], "quantity": 0}, headers=user_headers)
    assert res.status_code == 422
