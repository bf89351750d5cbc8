from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pymongo import ReturnDocument

from database import Database, create_document, get_db, object_id, page_params, paginate, search_filter, to_str_id, utcnow
from errors import BadRequest, NotFound
from schemas import PageQuery, Product, ProductIn, ProductUpdate, Size, Variant, VariantCreate, VariantUpdate
from security import require_admin

products_router = APIRouter(prefix="/products", tags=["products"])
variants_router = APIRouter(prefix="/variants", tags=["variants"])


def find_variant(database: Database, variant_id: Any) -> Optional[dict]:
    if not ObjectId.is_valid(str(variant_id)):
        return None
    return database["variant"].find_one({"_id": ObjectId(str(variant_id))})


def _insert_variants(database: Database, product_id: str, variants) -> None:
    for v in variants:
        create_document(database, "variant", Variant(product_id=product_id, **v.model_dump()))


def product_with_variants(database: Database, product: dict) -> dict:
    doc = to_str_id(product)
    doc["variants"] = [to_str_id(v) for v in database["variant"].find({"product_id": doc["id"]})]
    return doc


# Products
def create_product(database: Database, payload: ProductIn) -> dict:
    pid = create_document(database, "product", Product(**payload.model_dump(exclude={"variants"})))
    _insert_variants(database, pid, payload.variants)
    return get_product(database, pid)


def get_product(database: Database, product_id: str) -> dict:
    product = database["product"].find_one({"_id": object_id(product_id, "Product")})
    if not product:
        raise NotFound(f"Product with ID {product_id} not found")
    return product_with_variants(database, product)


def update_product(database: Database, product_id: str, payload: ProductUpdate) -> dict:
    changes = payload.model_dump(exclude_unset=True, exclude={"variants"})
    changes["updated_at"] = utcnow()
    product = database["product"].find_one_and_update(
        {"_id": object_id(product_id, "Product")}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise NotFound(f"Product with ID {product_id} not found")
    # A variants list replaces the existing variants wholesale.
    if payload.variants is not None:
        database["variant"].delete_many({"product_id": product_id})
        _insert_variants(database, product_id, payload.variants)
    return product_with_variants(database, product)


def delete_product(database: Database, product_id: str) -> dict:
    res = database["product"].delete_one({"_id": object_id(product_id, "Product")})
    if res.deleted_count == 0:
        raise NotFound(f"Product with ID {product_id} not found")
    database["variant"].delete_many({"product_id": product_id})
    return {"message": f"Product with ID {product_id} has been deleted"}


@products_router.post("", status_code=status.HTTP_201_CREATED)
def admin_create_product(payload: ProductIn, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return create_product(database, payload)


@products_router.get("")
def list_products(
    category: Optional[str] = None,
    query: PageQuery = Depends(page_params),
    database: Database = Depends(get_db),
):
    filt: Dict[str, Any] = search_filter(query.search, ["name", "description", "category"])
    if category:
        filt["category"] = category
    return paginate(
        database["product"], filt, query, ("created_at", "name", "category"),
        serialize=lambda p: product_with_variants(database, p),
    )


@products_router.get("/{product_id}")
def read_product(product_id: str, database: Database = Depends(get_db)):
    return get_product(database, product_id)


@products_router.patch("/{product_id}")
def admin_update_product(
    product_id: str,
    payload: ProductUpdate,
    database: Database = Depends(get_db),
    _: dict = Depends(require_admin),
):
    return update_product(database, product_id, payload)


@products_router.delete("/{product_id}")
def admin_delete_product(product_id: str, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return delete_product(database, product_id)


# Variants
def create_variant(database: Database, payload: VariantCreate) -> dict:
    if not ObjectId.is_valid(payload.product_id) or not database["product"].find_one({"_id": ObjectId(payload.product_id)}):
        raise BadRequest("Product does not exist")
    vid = create_document(database, "variant", Variant(**payload.model_dump()))
    return to_str_id(database["variant"].find_one({"_id": ObjectId(vid)}))


def get_variant(database: Database, variant_id: str) -> dict:
    variant = find_variant(database, variant_id)
    if not variant:
        raise NotFound(f"Variant with ID {variant_id} not found")
    return to_str_id(variant)


def update_variant(database: Database, variant_id: str, payload: VariantUpdate) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("product_id"):
        pid = changes["product_id"]
        if not ObjectId.is_valid(pid) or not database["product"].find_one({"_id": ObjectId(pid)}):
            raise BadRequest("Product does not exist")
    changes["updated_at"] = utcnow()
    variant = database["variant"].find_one_and_update(
        {"_id": object_id(variant_id, "Variant")}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not variant:
        raise NotFound(f"Variant with ID {variant_id} not found")
    return to_str_id(variant)


def delete_variant(database: Database, variant_id: str) -> dict:
    res = database["variant"].delete_one({"_id": object_id(variant_id, "Variant")})
    if res.deleted_count == 0:
        raise NotFound(f"Variant with ID {variant_id} not found")
    return {"message": f"Variant with ID {variant_id} has been deleted"}


@variants_router.post("", status_code=status.HTTP_201_CREATED)
def admin_create_variant(payload: VariantCreate, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return create_variant(database, payload)


@variants_router.get("")
def list_variants(
    product_id: Optional[str] = None,
    size: Optional[Size] = None,
    query: PageQuery = Depends(page_params),
    database: Database = Depends(get_db),
):
    filt: Dict[str, Any] = search_filter(query.search, ["color", "size"])
    if product_id:
        filt["product_id"] = product_id
    if size:
        filt["size"] = size.value
    return paginate(database["variant"], filt, query, ("created_at", "price", "stock"))


@variants_router.get("/{variant_id}")
def read_variant(variant_id: str, database: Database = Depends(get_db)):
    return get_variant(database, variant_id)


@variants_router.patch("/{variant_id}")
def admin_update_variant(
    variant_id: str,
    payload: VariantUpdate,
    database: Database = Depends(get_db),
    _: dict = Depends(require_admin),
):
    return update_variant(database, variant_id, payload)


@variants_router.delete("/{variant_id}")
def admin_delete_variant(variant_id: str, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return delete_variant(database, variant_id)
