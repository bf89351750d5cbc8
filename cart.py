"""
Shopping cart and its conversion into an order.

Each user owns one cart, created on first access. A cart holds at most one line
per variant; adding a variant that is already present increases its quantity.
Checkout prices every line from the live variant, writes the order snapshot and
empties the cart in a single transaction, then mails a confirmation on a
best-effort basis.
"""
import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from catalog import find_variant
from database import Database, create_document, get_db, object_id, to_str_id, utcnow
from errors import BadRequest, NotFound
from mail import MailSender, get_mailer
from schemas import CartItemIn, CartItemUpdate, Order, OrderItem, ShippingDetails
from security import get_current_user
from users import find_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

DESIGN_FIELDS = ("front_design", "back_design", "front_preview_url", "back_preview_url")


class CartService:
    def __init__(self, database: Database, mailer: Optional[MailSender] = None):
        self.db = database
        self.mailer = mailer

    def _get_or_create_cart(self, user_id: str) -> dict:
        now = utcnow()
        for _ in range(2):
            try:
                return self.db["cart"].find_one_and_update(
                    {"user_id": user_id},
                    {"$setOnInsert": {"created_at": now, "updated_at": now}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost an upsert race; the second pass finds the winner's cart.
                continue
        return self.db["cart"].find_one({"user_id": user_id})

    def _expand_item(self, item: dict) -> dict:
        doc = to_str_id(item)
        variant = find_variant(self.db, item["variant_id"])
        if not variant:
            doc["variant"] = None
            return doc
        product_id = str(variant.get("product_id"))
        product = self.db["product"].find_one({"_id": ObjectId(product_id)}) if ObjectId.is_valid(product_id) else None
        doc["variant"] = to_str_id(variant)
        doc["variant"]["product"] = to_str_id(product)
        return doc

    def get_my_cart(self, user_id: str) -> dict:
        cart = self._get_or_create_cart(user_id)
        items = self.db["cart_item"].find({"cart_id": str(cart["_id"])}).sort("created_at", 1)
        doc = to_str_id(cart)
        doc["items"] = [self._expand_item(item) for item in items]
        return doc

    def add_item_to_cart(self, user_id: str, variant_id: str, quantity: int, design: Optional[Dict[str, Any]] = None) -> dict:
        cart = self._get_or_create_cart(user_id)
        variant = find_variant(self.db, variant_id)
        if not variant:
            raise NotFound("Product variant not found")
        design = design or {}
        now = utcnow()
        # Only the quantity changes on an existing line; its design stays as first added.
        update = {
            "$inc": {"quantity": quantity},
            "$set": {"updated_at": now},
            "$setOnInsert": {**{k: design.get(k) for k in DESIGN_FIELDS}, "created_at": now},
        }
        filt = {"cart_id": str(cart["_id"]), "variant_id": str(variant["_id"])}
        try:
            item = self.db["cart_item"].find_one_and_update(filt, update, upsert=True, return_document=ReturnDocument.AFTER)
        except DuplicateKeyError:
            item = self.db["cart_item"].find_one_and_update(filt, update, return_document=ReturnDocument.AFTER)
        return to_str_id(item)

    def _owned_item(self, user_id: str, item_id: str) -> dict:
        oid = object_id(item_id, "Cart item")
        cart = self.db["cart"].find_one({"user_id": user_id})
        item = self.db["cart_item"].find_one({"_id": oid, "cart_id": str(cart["_id"])}) if cart else None
        if not item:
            raise NotFound("Cart item not found")
        return item

    def update_cart_item(self, user_id: str, item_id: str, quantity: int) -> dict:
        item = self._owned_item(user_id, item_id)
        if quantity <= 0:
            self.db["cart_item"].delete_one({"_id": item["_id"]})
            return {"id": item_id, "deleted": True}
        item = self.db["cart_item"].find_one_and_update(
            {"_id": item["_id"]},
            {"$set": {"quantity": quantity, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return to_str_id(item)

    def remove_item(self, user_id: str, item_id: str) -> dict:
        item = self._owned_item(user_id, item_id)
        self.db["cart_item"].delete_one({"_id": item["_id"]})
        return {"id": item_id, "deleted": True}

    def clear_cart(self, user_id: str) -> dict:
        cart = self.db["cart"].find_one({"user_id": user_id})
        if cart:
            self.db["cart_item"].delete_many({"cart_id": str(cart["_id"])})
        return {"message": "Cart cleared successfully"}

    def convert_cart_to_order(self, user_id: str, shipping: Dict[str, str]) -> dict:
        cart = self.db["cart"].find_one({"user_id": user_id})
        items = list(self.db["cart_item"].find({"cart_id": str(cart["_id"])}).sort("created_at", 1)) if cart else []
        if not items:
            raise BadRequest("Cart is empty")

        lines = []
        total = 0.0
        for item in items:
            variant = find_variant(self.db, item["variant_id"])
            if not variant:
                raise BadRequest(f"Variant with ID {item['variant_id']} not found")
            price = float(variant["price"])
            total += price * item["quantity"]
            lines.append(OrderItem(
                id=str(ObjectId()),
                variant_id=item["variant_id"],
                quantity=item["quantity"],
                price=price,
                **{k: item.get(k) for k in DESIGN_FIELDS},
            ))
        if total <= 0:
            raise BadRequest("Total price must be greater than zero")

        order = Order(user_id=user_id, total_price=round(total, 2), items=lines, **shipping)
        with self.db.transaction() as session:
            order_id = create_document(self.db, "order", order, session=session)
            self.db["cart_item"].delete_many({"cart_id": str(cart["_id"])}, session=session)
        logger.info("Order %s placed from cart by user %s, total %.2f", order_id, user_id, order.total_price)

        placed = to_str_id(self.db["order"].find_one({"_id": ObjectId(order_id)}))
        self._send_confirmation(user_id, placed)
        return placed

    def _send_confirmation(self, user_id: str, order: dict) -> None:
        # The order is already committed; a mail failure must not undo or fail it.
        if self.mailer is None:
            return
        user = find_user(self.db, user_id)
        if not user or not user.get("email"):
            return
        try:
            self.mailer.send_order_confirmation(user["email"], user.get("full_name", ""), order)
        except Exception:
            logger.exception("Failed to send order confirmation email for order %s", order["id"])


def get_cart_service(database: Database = Depends(get_db), mail: MailSender = Depends(get_mailer)) -> CartService:
    return CartService(database, mail)


# Routes
@router.get("")
def get_cart(user: dict = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    return service.get_my_cart(str(user["_id"]))


@router.post("/items", status_code=status.HTTP_201_CREATED)
def add_item(payload: CartItemIn, user: dict = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    design = payload.model_dump(include=set(DESIGN_FIELDS))
    return service.add_item_to_cart(str(user["_id"]), payload.variant_id, payload.quantity, design)


@router.patch("/items/{item_id}")
def update_item(
    item_id: str,
    payload: CartItemUpdate,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    return service.update_cart_item(str(user["_id"]), item_id, payload.quantity)


@router.delete("/items/{item_id}")
def remove_item(item_id: str, user: dict = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    return service.remove_item(str(user["_id"]), item_id)


@router.delete("")
def clear_cart(user: dict = Depends(get_current_user), service: CartService = Depends(get_cart_service)):
    return service.clear_cart(str(user["_id"]))


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
def checkout(
    payload: ShippingDetails,
    user: dict = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
):
    return service.convert_cart_to_order(str(user["_id"]), payload.resolved())
