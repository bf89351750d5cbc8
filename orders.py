import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query, status
from pymongo import DESCENDING, ReturnDocument

from cart import CartService
from catalog import find_variant
from database import Database, create_document, get_db, object_id, page_params, paginate, search_filter, to_str_id, utcnow
from errors import Forbidden, NotFound
from mail import MailSender, get_mailer
from schemas import (
    Order,
    OrderCreate,
    OrderItem,
    OrderItemCreate,
    OrderItemIn,
    OrderItemUpdate,
    OrderStatus,
    OrderStatusUpdate,
    OrderUpdate,
    PageQuery,
    PaymentStatus,
    ShippingDetails,
)
from security import get_current_user, is_admin, require_admin
from users import find_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])
items_router = APIRouter(prefix="/order-items", tags=["order-items"])


class OrderService:
    def __init__(self, database: Database, mailer: Optional[MailSender] = None):
        self.db = database
        self.mailer = mailer

    def _build_items(self, items: List[OrderItemIn]) -> List[OrderItem]:
        lines = []
        for item in items:
            variant = find_variant(self.db, item.variant_id)
            if not variant:
                raise NotFound(f"Variant with ID {item.variant_id} not found")
            data = item.model_dump()
            if data["price"] is None:
                data["price"] = float(variant["price"])
            lines.append(OrderItem(id=str(ObjectId()), **data))
        return lines

    def _find(self, order_id: str) -> dict:
        order = self.db["order"].find_one({"_id": object_id(order_id, "Order")})
        if not order:
            raise NotFound(f"Order with ID {order_id} not found")
        return order

    def _expand(self, order: dict, with_user: bool = False) -> dict:
        doc = to_str_id(order)
        for item in doc["items"]:
            variant = find_variant(self.db, item["variant_id"])
            if variant:
                variant = to_str_id(variant)
                pid = str(variant.get("product_id"))
                product = self.db["product"].find_one({"_id": ObjectId(pid)}) if ObjectId.is_valid(pid) else None
                variant["product"] = to_str_id(product)
            item["variant"] = variant
        if with_user:
            user = find_user(self.db, order["user_id"])
            doc["user"] = {
                "id": str(user["_id"]),
                "full_name": user.get("full_name"),
                "email": user.get("email"),
                "phone": user.get("phone"),
            } if user else None
        return doc

    def place_order_from_cart(self, user_id: str, shipping: Dict[str, str]) -> dict:
        return CartService(self.db, self.mailer).convert_cart_to_order(user_id, shipping)

    def create_order(self, user_id: str, payload: OrderCreate) -> dict:
        lines = self._build_items(payload.items)
        # A client supplied total wins; otherwise price the lines.
        total = payload.total_price
        if total is None:
            total = round(sum(line.price * line.quantity for line in lines), 2)
        order = Order(
            user_id=user_id,
            status=payload.status,
            payment_status=payload.payment_status,
            total_price=total,
            items=lines,
            **payload.resolved(),
        )
        order_id = create_document(self.db, "order", order)
        logger.info("Order %s created by user %s", order_id, user_id)
        return self._expand(self._find(order_id), with_user=True)

    def find_all(self, query: PageQuery, order_status: Optional[str] = None, payment_status: Optional[str] = None) -> dict:
        filt: Dict[str, Any] = search_filter(query.search, ["customer_phone", "customer_name", "region", "address"])
        if order_status:
            filt["status"] = order_status
        if payment_status:
            filt["payment_status"] = payment_status
        return paginate(
            self.db["order"], filt, query, ("created_at", "total_price", "status"),
            serialize=lambda o: self._expand(o, with_user=True),
        )

    def find_user_orders(self, user_id: str) -> List[dict]:
        cursor = self.db["order"].find({"user_id": user_id}).sort("created_at", DESCENDING)
        return [self._expand(o) for o in cursor]

    def get_order(self, order_id: str, user: dict) -> dict:
        order = self._find(order_id)
        if not is_admin(user) and order["user_id"] != str(user["_id"]):
            raise Forbidden("You can only access your own orders")
        return self._expand(order, with_user=True)

    def update_order(self, order_id: str, payload: OrderUpdate) -> dict:
        changes = payload.model_dump(exclude_unset=True, exclude={"items"})
        if payload.items is not None:
            lines = self._build_items(payload.items)
            changes["items"] = [line.model_dump() for line in lines]
            changes["total_price"] = round(sum(line.price * line.quantity for line in lines), 2)
        changes["updated_at"] = utcnow()
        order = self.db["order"].find_one_and_update(
            {"_id": object_id(order_id, "Order")}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not order:
            raise NotFound(f"Order with ID {order_id} not found")
        return self._expand(order, with_user=True)

    def update_status(self, order_id: str, payload: OrderStatusUpdate) -> dict:
        return self.update_order(order_id, OrderUpdate(**payload.model_dump(exclude_unset=True)))

    def delete_order(self, order_id: str) -> dict:
        res = self.db["order"].delete_one({"_id": object_id(order_id, "Order")})
        if res.deleted_count == 0:
            raise NotFound(f"Order with ID {order_id} not found")
        return {"message": f"Order with ID {order_id} has been deleted"}

    # Order items live inside their order document.
    def _find_item(self, item_id: str):
        order = self.db["order"].find_one({"items.id": item_id})
        if not order:
            raise NotFound(f"OrderItem with ID {item_id} not found")
        item = next(i for i in order["items"] if i["id"] == item_id)
        return order, item

    @staticmethod
    def _item_view(order: dict, item: dict) -> dict:
        doc = to_str_id(dict(item))
        doc["order"] = {"id": str(order["_id"]), "status": order.get("status")}
        return doc

    def add_order_item(self, payload: OrderItemCreate) -> dict:
        order = self._find(payload.order_id)
        line = self._build_items([OrderItemIn(**payload.model_dump(exclude={"order_id"}))])[0]
        self.db["order"].update_one(
            {"_id": order["_id"]},
            {"$push": {"items": line.model_dump()}, "$set": {"updated_at": utcnow()}},
        )
        return self._item_view(order, line.model_dump())

    def list_order_items(self, order_id: Optional[str] = None) -> List[dict]:
        filt = {"_id": object_id(order_id, "Order")} if order_id else {}
        return [self._item_view(order, item) for order in self.db["order"].find(filt) for item in order.get("items", [])]

    def get_order_item(self, item_id: str, user: dict) -> dict:
        order, item = self._find_item(item_id)
        if not is_admin(user) and order["user_id"] != str(user["_id"]):
            raise Forbidden("You can only access your own orders")
        return self._item_view(order, item)

    def update_order_item(self, item_id: str, payload: OrderItemUpdate) -> dict:
        order, item = self._find_item(item_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("variant_id") and not find_variant(self.db, changes["variant_id"]):
            raise NotFound(f"Variant with ID {changes['variant_id']} not found")
        item.update(changes)
        self.db["order"].update_one(
            {"_id": order["_id"]},
            {"$set": {"items": order["items"], "updated_at": utcnow()}},
        )
        return self._item_view(order, item)

    def remove_order_item(self, item_id: str) -> dict:
        order, _ = self._find_item(item_id)
        remaining = [i for i in order["items"] if i["id"] != item_id]
        self.db["order"].update_one({"_id": order["_id"]}, {"$set": {"items": remaining, "updated_at": utcnow()}})
        return {"message": f"OrderItem with ID {item_id} has been deleted"}


def get_order_service(database: Database = Depends(get_db), mail: MailSender = Depends(get_mailer)) -> OrderService:
    return OrderService(database, mail)


# Routes
@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, user: dict = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    # The owner always comes from the token, never from the body.
    return service.create_order(str(user["_id"]), payload)


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
def checkout(payload: ShippingDetails, user: dict = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return service.place_order_from_cart(str(user["_id"]), payload.resolved())


@router.get("")
def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = None,
    query: PageQuery = Depends(page_params),
    user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    if not is_admin(user):
        return {"data": service.find_user_orders(str(user["_id"]))}
    return service.find_all(
        query,
        order_status.value if order_status else None,
        payment_status.value if payment_status else None,
    )


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return service.get_order(order_id, user)


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    service: OrderService = Depends(get_order_service),
    _: dict = Depends(require_admin),
):
    return service.update_status(order_id, payload)


@router.patch("/{order_id}")
def update_order(
    order_id: str,
    payload: OrderUpdate,
    service: OrderService = Depends(get_order_service),
    _: dict = Depends(require_admin),
):
    return service.update_order(order_id, payload)


@router.delete("/{order_id}")
def delete_order(order_id: str, service: OrderService = Depends(get_order_service), _: dict = Depends(require_admin)):
    return service.delete_order(order_id)


@router.get("/{order_id}/print-files")
def get_print_details(order_id: str, user: dict = Depends(require_admin), service: OrderService = Depends(get_order_service)):
    return service.get_order(order_id, user)


@items_router.post("", status_code=status.HTTP_201_CREATED)
def create_order_item(payload: OrderItemCreate, service: OrderService = Depends(get_order_service), _: dict = Depends(require_admin)):
    return service.add_order_item(payload)


@items_router.get("")
def list_order_items(
    order_id: Optional[str] = None,
    service: OrderService = Depends(get_order_service),
    _: dict = Depends(require_admin),
):
    return service.list_order_items(order_id)


@items_router.get("/{item_id}")
def get_order_item(item_id: str, user: dict = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return service.get_order_item(item_id, user)


@items_router.patch("/{item_id}")
def update_order_item(
    item_id: str,
    payload: OrderItemUpdate,
    service: OrderService = Depends(get_order_service),
    _: dict = Depends(require_admin),
):
    return service.update_order_item(item_id, payload)


@items_router.delete("/{item_id}")
def delete_order_item(item_id: str, service: OrderService = Depends(get_order_service), _: dict = Depends(require_admin)):
    return service.remove_order_item(item_id)
