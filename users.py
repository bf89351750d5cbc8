import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import SUPER_ADMIN_EMAIL, SUPER_ADMIN_NAME, SUPER_ADMIN_PASSWORD
from database import Database, create_document, get_db, object_id, page_params, paginate, search_filter, to_str_id, utcnow
from errors import BadRequest, NotFound
from schemas import PageQuery, PromoteRequest, Role, User, UserCreate, UserUpdate
from security import get_current_user, hash_password, require_admin, require_super_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

PRIVATE_FIELDS = ("hashed_password", "otp_code", "otp_expires", "hashed_refresh_token")


def sanitize_user(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return user
    return to_str_id({k: v for k, v in user.items() if k not in PRIVATE_FIELDS})


def find_user(database: Database, user_id: Any) -> Optional[dict]:
    if not ObjectId.is_valid(str(user_id)):
        return None
    return database["user"].find_one({"_id": ObjectId(str(user_id))})


def find_user_by_email(database: Database, email: str) -> Optional[dict]:
    return database["user"].find_one({"email": str(email)})


def create_user(database: Database, data: Dict[str, Any]) -> dict:
    """Insert a user. The plain `password` is hashed here and nowhere else."""
    data = dict(data)
    password = data.pop("password")
    if find_user_by_email(database, data["email"]):
        raise BadRequest("Email already registered")
    user = User(hashed_password=hash_password(password), **data)
    try:
        uid = create_document(database, "user", user)
    except DuplicateKeyError:
        raise BadRequest("Email already registered")
    return database["user"].find_one({"_id": ObjectId(uid)})


def update_user(database: Database, user_id: Any, data: Dict[str, Any]) -> dict:
    """Apply `data` to a user. A `password` key is stored as a fresh hash."""
    changes = dict(data)
    password = changes.pop("password", None)
    if password is not None:
        changes["hashed_password"] = hash_password(password)
    changes["updated_at"] = utcnow()
    user = database["user"].find_one_and_update(
        {"_id": object_id(str(user_id), "User")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFound(f"User with ID {user_id} not found")
    return user


def promote_user(database: Database, user_id: str, role: str, actor: dict) -> dict:
    if str(actor["_id"]) == user_id:
        raise BadRequest("You cannot change your own role")
    if role == Role.SUPER_ADMIN.value:
        raise BadRequest("SUPER_ADMIN role cannot be granted")
    if not find_user(database, user_id):
        raise NotFound(f"User with ID {user_id} not found")
    user = update_user(database, user_id, {"role": role})
    logger.info("User %s role changed to %s by %s", user_id, role, actor["_id"])
    return user


def seed_super_admin(database: Database) -> None:
    if not SUPER_ADMIN_EMAIL or not SUPER_ADMIN_PASSWORD:
        return
    if find_user_by_email(database, SUPER_ADMIN_EMAIL):
        return
    create_user(database, {
        "full_name": SUPER_ADMIN_NAME,
        "email": SUPER_ADMIN_EMAIL,
        "password": SUPER_ADMIN_PASSWORD,
        "role": Role.SUPER_ADMIN,
        "is_active": True,
    })
    logger.info("Seeded super admin %s", SUPER_ADMIN_EMAIL)


# Routes
@router.post("", status_code=status.HTTP_201_CREATED)
def admin_create_user(payload: UserCreate, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return sanitize_user(create_user(database, payload.model_dump()))


@router.get("")
def list_users(
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    query: PageQuery = Depends(page_params),
    database: Database = Depends(get_db),
    _: dict = Depends(require_admin),
):
    filt: Dict[str, Any] = search_filter(query.search, ["full_name", "email", "phone"])
    if role:
        filt["role"] = role.value
    if is_active is not None:
        filt["is_active"] = is_active
    return paginate(database["user"], filt, query, ("created_at", "full_name", "email", "role"), serialize=sanitize_user)


@router.get("/{user_id}")
def get_user(user_id: str, database: Database = Depends(get_db), _: dict = Depends(get_current_user)):
    user = find_user(database, user_id)
    if not user:
        raise NotFound(f"User with ID {user_id} not found")
    return sanitize_user(user)


@router.patch("/{user_id}")
def admin_update_user(
    user_id: str,
    payload: UserUpdate,
    database: Database = Depends(get_db),
    _: dict = Depends(require_admin),
):
    return sanitize_user(update_user(database, user_id, payload.model_dump(exclude_unset=True)))


@router.delete("/{user_id}")
def delete_user(user_id: str, database: Database = Depends(get_db), _: dict = Depends(require_admin)):
    res = database["user"].delete_one({"_id": object_id(user_id, "User")})
    if res.deleted_count == 0:
        raise NotFound(f"User with ID {user_id} not found")
    cart = database["cart"].find_one_and_delete({"user_id": user_id})
    if cart:
        database["cart_item"].delete_many({"cart_id": str(cart["_id"])})
    return {"message": f"User with ID {user_id} has been deleted"}


@router.patch("/{user_id}/promote")
def promote(
    user_id: str,
    payload: PromoteRequest,
    database: Database = Depends(get_db),
    actor: dict = Depends(require_super_admin),
):
    return sanitize_user(promote_user(database, user_id, payload.role, actor))
