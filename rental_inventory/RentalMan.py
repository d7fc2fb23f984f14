import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass

from db.deps import get_rental_db
from db.session import SessionLocalRental, init_db
from db.unit_of_work import unit_of_work
from schemas.inventory import UnitAccessoriesUpdate, UnitCreate, UnitUpdate
from schemas.payments import PaymentAccountCreate, PaymentAccountUpdate, RecordPaymentRequest
from schemas.rentals import CreateRentalDto, ReturnRentalDto
from services.audit_service import log_audit
from services.billing_service import get_bill_or_404, return_rental, serialize_bill
from services.errors import RentalServiceError
from services.inventory_service import (
    add_unit,
    delete_unit,
    get_unit_or_404,
    list_units,
    replace_unit_accessories,
    serialize_history,
    serialize_unit,
    toggle_archive,
    update_unit,
)
from services.notification_service import (
    RentalReturnScheduler,
    check_rental_returns,
    list_pending,
    mark_read,
    serialize_notification,
)
from services.payment_service import (
    account_transactions,
    apply_payment,
    create_account,
    deactivate_account,
    get_account_or_404,
    list_accounts,
    serialize_account,
    update_account,
)
from services.rental_service import create_rental, get_rental_or_404, list_rentals, serialize_rental

logging.basicConfig(
    level=str(os.environ.get("LOG_LEVEL", "INFO")).strip().upper() or "INFO",
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger("rental_inventory.api")


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if _env_flag("DB_AUTO_CREATE"):
        init_db()
    scheduler = None
    if _env_flag("RENTAL_SCHEDULER_ENABLED"):
        interval = int(os.environ.get("RENTAL_SCHEDULER_INTERVAL_SECONDS") or "3600")
        scheduler = RentalReturnScheduler(SessionLocalRental, interval_seconds=interval)
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(RentalServiceError)
async def rental_error_handler(request: Request, exc: RentalServiceError):
    LOGGER.info("Request rejected %s %s kind=%s detail=%s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    LOGGER.error("Unhandled error %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "kind": "internal"})


def get_actor_id(x_actor_id: str | None = Header(None, alias="X-Actor-ID")) -> int | None:
    raw = (x_actor_id or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise HTTPException(status_code=400, detail="Invalid X-Actor-ID header.")
    return int(raw)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# Rentals

@app.get("/api/rentals")
def get_rentals(
    status: str | None = Query(None),
    customer_id: int | None = Query(None, alias="customerId"),
    db: Session = Depends(get_rental_db),
):
    return [serialize_rental(rental) for rental in list_rentals(db, status=status, customer_id=customer_id)]


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: int, db: Session = Depends(get_rental_db)):
    rental = get_rental_or_404(db, rental_id)
    payload = serialize_rental(rental)
    payload["finalBill"] = serialize_bill(get_bill_or_404(db, rental.BillID)) if rental.BillID else None
    return payload


@app.post("/api/rentals", status_code=201)
def post_rental(payload: CreateRentalDto, db: Session = Depends(get_rental_db), actor_id: int | None = Depends(get_actor_id)):
    rental = create_rental(db, payload, actor_id)
    return serialize_rental(get_rental_or_404(db, rental.RentalID))


@app.post("/api/rentals/{rental_id}/return")
def post_rental_return(
    rental_id: int,
    payload: ReturnRentalDto,
    db: Session = Depends(get_rental_db),
    actor_id: int | None = Depends(get_actor_id),
):
    rental, bill = return_rental(db, rental_id, payload, actor_id)
    return {
        "rental": serialize_rental(get_rental_or_404(db, rental.RentalID)),
        "bill": serialize_bill(get_bill_or_404(db, bill.BillID)),
    }


# Inventory units

@app.get("/api/rental-products/{product_id}/units")
def get_product_units(product_id: int, db: Session = Depends(get_rental_db)):
    return [serialize_unit(unit) for unit in list_units(db, product_id)]


@app.get("/api/rental-products/{product_id}/units/archived")
def get_archived_product_units(product_id: int, db: Session = Depends(get_rental_db)):
    return [serialize_unit(unit) for unit in list_units(db, product_id, archived=True)]


@app.post("/api/rental-products/{product_id}/units", status_code=201)
def post_product_unit(
    product_id: int,
    payload: UnitCreate,
    db: Session = Depends(get_rental_db),
    actor_id: int | None = Depends(get_actor_id),
):
    with unit_of_work(db, "add_unit", product_id=product_id):
        unit = add_unit(db, product_id, payload, actor_id)
        db.flush()
        log_audit(db, "InventoryUnit", unit.UnitID, "AddUnit", unit.UniqueIdentifier, user_id=actor_id)
    return serialize_unit(unit)


@app.get("/api/inventory-units/{unit_id}")
def get_inventory_unit(unit_id: int, db: Session = Depends(get_rental_db)):
    return serialize_unit(get_unit_or_404(db, unit_id))


@app.put("/api/inventory-units/{unit_id}")
def put_inventory_unit(
    unit_id: int,
    payload: UnitUpdate,
    db: Session = Depends(get_rental_db),
    actor_id: int | None = Depends(get_actor_id),
):
    with unit_of_work(db, "update_unit", unit_id=unit_id):
        unit = update_unit(db, unit_id, payload, actor_id)
    return serialize_unit(unit)


@app.delete("/api/inventory-units/{unit_id}")
def delete_inventory_unit(unit_id: int, db: Session = Depends(get_rental_db), actor_id: int | None = Depends(get_actor_id)):
    with unit_of_work(db, "delete_unit", unit_id=unit_id):
        delete_unit(db, unit_id)
        log_audit(db, "InventoryUnit", unit_id, "DeleteUnit", None, user_id=actor_id)
    return {"ok": True}


@app.post("/api/inventory-units/{unit_id}/archive")
def archive_inventory_unit(unit_id: int, db: Session = Depends(get_rental_db), actor_id: int | None = Depends(get_actor_id)):
    with unit_of_work(db, "toggle_archive", unit_id=unit_id):
        unit = toggle_archive(db, unit_id, actor_id)
        log_audit(
            db,
            "InventoryUnit",
            unit_id,
            "ArchiveUnit" if unit.IsArchived else "RestoreUnit",
            unit.UniqueIdentifier,
            user_id=actor_id,
        )
    return serialize_unit(unit)


@app.get("/api/inventory-units/{unit_id}/history")
def get_inventory_unit_history(unit_id: int, db: Session = Depends(get_rental_db)):
    unit = get_unit_or_404(db, unit_id)
    return [serialize_history(entry) for entry in unit.History]


@app.put("/api/inventory-units/{unit_id}/accessories")
def put_inventory_unit_accessories(unit_id: int, payload: UnitAccessoriesUpdate, db: Session = Depends(get_rental_db)):
    with unit_of_work(db, "replace_unit_accessories", unit_id=unit_id):
        unit = get_unit_or_404(db, unit_id)
        replace_unit_accessories(db, unit, payload.accessories)
    return serialize_unit(unit)


# Bills and payments

@app.get("/api/bills/{bill_id}")
def get_bill(bill_id: int, db: Session = Depends(get_rental_db)):
    return serialize_bill(get_bill_or_404(db, bill_id))


@app.post("/api/bills/{bill_id}/record-payment")
def post_bill_payment(
    bill_id: int,
    payload: RecordPaymentRequest,
    db: Session = Depends(get_rental_db),
    actor_id: int | None = Depends(get_actor_id),
):
    bill = apply_payment(
        db,
        bill_id,
        payload.amount,
        payload.paymentMethod,
        payload.paymentAccountId,
        payload.notes,
        actor_id,
        direction=payload.direction,
    )
    return serialize_bill(get_bill_or_404(db, bill.BillID))


@app.get("/api/payment-accounts")
def get_payment_accounts(
    status: str | None = Query(None),
    account_type: str | None = Query(None, alias="accountType"),
    db: Session = Depends(get_rental_db),
):
    return [serialize_account(account) for account in list_accounts(db, status=status, account_type=account_type)]


@app.post("/api/payment-accounts", status_code=201)
def post_payment_account(
    payload: PaymentAccountCreate,
    db: Session = Depends(get_rental_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return serialize_account(create_account(db, payload, actor_id))


@app.get("/api/payment-accounts/{account_id}")
def get_payment_account(account_id: int, db: Session = Depends(get_rental_db)):
    return serialize_account(get_account_or_404(db, account_id))


@app.put("/api/payment-accounts/{account_id}")
def put_payment_account(account_id: int, payload: PaymentAccountUpdate, db: Session = Depends(get_rental_db)):
    return serialize_account(update_account(db, account_id, payload))


@app.delete("/api/payment-accounts/{account_id}")
def delete_payment_account(account_id: int, db: Session = Depends(get_rental_db)):
    return serialize_account(deactivate_account(db, account_id))


@app.get("/api/payment-accounts/{account_id}/transactions")
def get_payment_account_transactions(account_id: int, db: Session = Depends(get_rental_db)):
    return account_transactions(db, account_id)


# Notifications

@app.post("/api/notifications/run")
def run_notification_check(db: Session = Depends(get_rental_db)):
    checked = check_rental_returns(db)
    return {"checked": checked, "pending": [serialize_notification(n) for n in list_pending(db)]}


@app.get("/api/notifications/pending")
def get_pending_notifications(db: Session = Depends(get_rental_db)):
    return [serialize_notification(n) for n in list_pending(db)]


@app.post("/api/notifications/{notification_id}/read")
def read_notification(notification_id: int, db: Session = Depends(get_rental_db)):
    return serialize_notification(mark_read(db, notification_id))
