import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockledger.config import get_settings
from stockledger.errors import InventoryError
from stockledger.routers import (
    goods_receipts,
    health,
    inventory,
    movements,
    purchase_orders,
    purchase_requests,
    reports,
    variants,
)
from stockledger.routers.common import status_for


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()

app = FastAPI(title="Stock Ledger API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(inventory.router)
app.include_router(movements.router)
app.include_router(purchase_requests.router)
app.include_router(purchase_orders.router)
app.include_router(goods_receipts.router)
app.include_router(variants.router)
app.include_router(reports.router)


@app.exception_handler(InventoryError)
def inventory_error_handler(request: Request, exc: InventoryError):
    # Read endpoints call services directly; writes go through run_action.
    return JSONResponse(
        status_code=status_for(exc.code),
        content={"detail": exc.message, "code": exc.code, "field": exc.field},
    )


@app.get("/")
def root():
    return {"status": "ok"}
