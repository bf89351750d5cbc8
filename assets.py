import logging

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import Database, create_document, get_db, object_id, page_params, paginate, search_filter, to_str_id, utcnow
from errors import Conflict, Forbidden, NotFound
from schemas import Asset, AssetIn, AssetUpdate, PageQuery
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assets", tags=["assets"])

PREVIEW_FIELDS = ("front_preview_url", "back_preview_url")


def _owned_asset(database: Database, asset_id: str, user: dict) -> dict:
    asset = database["asset"].find_one({"_id": object_id(asset_id, "Asset")})
    if not asset:
        raise NotFound(f"Asset with ID {asset_id} not found")
    if asset["user_id"] != str(user["_id"]):
        raise Forbidden("You do not have permission to access this asset")
    return asset


def asset_usage(database: Database, url: str) -> dict:
    """Count cart lines and order lines whose design previews point at `url`."""
    cart_items = database["cart_item"].count_documents({"$or": [{f: url} for f in PREVIEW_FIELDS]})
    order_items = sum(
        1
        for order in database["order"].find({"$or": [{f"items.{f}": url} for f in PREVIEW_FIELDS]})
        for item in order.get("items", [])
        if url in (item.get(f) for f in PREVIEW_FIELDS)
    )
    return {"cart_items": cart_items, "order_items": order_items}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_asset(payload: AssetIn, user: dict = Depends(get_current_user), database: Database = Depends(get_db)):
    try:
        aid = create_document(database, "asset", Asset(url=payload.url, user_id=str(user["_id"])))
    except DuplicateKeyError:
        raise Conflict("Asset already exists")
    return to_str_id(database["asset"].find_one({"_id": ObjectId(aid)}))


@router.get("")
def list_assets(
    query: PageQuery = Depends(page_params),
    user: dict = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    filt = {"user_id": str(user["_id"]), **search_filter(query.search, ["url"])}
    return paginate(database["asset"], filt, query, ("created_at",))


@router.get("/{asset_id}")
def get_asset(asset_id: str, user: dict = Depends(get_current_user), database: Database = Depends(get_db)):
    return to_str_id(_owned_asset(database, asset_id, user))


@router.patch("/{asset_id}")
def update_asset(
    asset_id: str,
    payload: AssetUpdate,
    user: dict = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    asset = _owned_asset(database, asset_id, user)
    changes = payload.model_dump(exclude_unset=True)
    changes["updated_at"] = utcnow()
    try:
        asset = database["asset"].find_one_and_update(
            {"_id": asset["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise Conflict("Asset already exists")
    return to_str_id(asset)


@router.delete("/{asset_id}")
def delete_asset(asset_id: str, user: dict = Depends(get_current_user), database: Database = Depends(get_db)):
    asset = _owned_asset(database, asset_id, user)
    usage = asset_usage(database, asset["url"])
    if usage["cart_items"] or usage["order_items"]:
        logger.warning(
            "Asset %s is used in %d cart items and %d order items, deleting anyway",
            asset_id, usage["cart_items"], usage["order_items"],
        )
    database["asset"].delete_one({"_id": asset["_id"]})
    return {"message": f"Asset with ID {asset_id} has been deleted"}
