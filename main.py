import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import database
from assets import router as assets_router
from auth import router as auth_router
from cart import router as cart_router
from catalog import products_router, variants_router
from config import CORS_ORIGINS, LOG_LEVEL, PORT
from orders import items_router as order_items_router
from orders import router as orders_router
from users import router as users_router
from users import seed_super_admin

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def prepare_database():
    if database.db is None:
        logger.warning("DATABASE_URL is not set; running without a database")
        return
    database.ensure_indexes(database.db)
    seed_super_admin(database.db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    prepare_database()
    yield


# App setup
app = FastAPI(title="Print-on-Demand API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (
    auth_router,
    users_router,
    products_router,
    variants_router,
    cart_router,
    orders_router,
    order_items_router,
    assets_router,
):
    app.include_router(router)


# Health and helpers
@app.get("/")
def root():
    return {"message": "Print-on-Demand API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
