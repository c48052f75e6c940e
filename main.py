import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from database import db, ensure_indexes, get_db
from catalog import ProductCatalog
from customers import CustomerRegistry
from orders import OrderWorkflow
from stats import StatsAggregator
from schemas import OrderIn, OrderStatusIn, ProductIn
import notifications

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ENABLE_NOTIFICATIONS = os.getenv("ENABLE_NOTIFICATIONS", "").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; store endpoints will answer 503")
    yield


# FastAPI app
app = FastAPI(title="Store API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if ENABLE_NOTIFICATIONS:
    app.include_router(notifications.router)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def internal_error(exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


# Dependencies
def get_catalog(database=Depends(get_db)) -> ProductCatalog:
    return ProductCatalog(database)


def get_customers(database=Depends(get_db)) -> CustomerRegistry:
    return CustomerRegistry(database)


def get_orders(database=Depends(get_db)) -> OrderWorkflow:
    return OrderWorkflow(database)


def get_stats(database=Depends(get_db)) -> StatsAggregator:
    return StatsAggregator(database)


# Products
@app.get("/api/products")
def list_products(catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.list_products()


@app.post("/api/products", status_code=status.HTTP_201_CREATED)
def create_product(body: ProductIn, catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.create_product(body)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductIn, catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.update_product(product_id, body)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
    return catalog.delete_product(product_id)


# Customers
@app.get("/api/customers")
def list_customers(customers: CustomerRegistry = Depends(get_customers)):
    return customers.list_customers()


# Orders
@app.get("/api/orders")
def list_orders(orders: OrderWorkflow = Depends(get_orders)):
    return orders.list_orders()


@app.post("/api/orders", status_code=status.HTTP_201_CREATED)
def create_order(body: OrderIn, orders: OrderWorkflow = Depends(get_orders)):
    try:
        return orders.place_order(body)
    except PyMongoError as e:
        logger.exception("Error creating order")
        return internal_error(e)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusIn, orders: OrderWorkflow = Depends(get_orders)):
    try:
        return orders.set_status(order_id, body.status)
    except PyMongoError as e:
        logger.exception("Error updating order status")
        return internal_error(e)


# Stats
@app.get("/api/stats")
def get_stats_summary(stats: StatsAggregator = Depends(get_stats)):
    return stats.compute()


# Health + test
@app.get("/")
def root():
    return {"message": "Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "notifications": "✅ Enabled" if ENABLE_NOTIFICATIONS else "❌ Disabled",
        "collections": []
    }
    try:
        if db is not None:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
    except PyMongoError as e:
        response["error"] = str(e)[:120]
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3000))
    uvicorn.run(app, host="0.0.0.0", port=port)
