import os
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

os.environ.setdefault("RENTAL_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from db.session import SessionLocalRental, engine_rental
from models import rental_models  # noqa: F401
from models.rental_models import (
    Accessory,
    InventoryUnit,
    PaymentAccount,
    Product,
    RentalCustomer,
    RentalProduct,
)


def reset_schema() -> None:
    Base.metadata.drop_all(bind=engine_rental)
    Base.metadata.create_all(bind=engine_rental)


def drop_schema() -> None:
    Base.metadata.drop_all(bind=engine_rental)


def new_session():
    return SessionLocalRental()


def add_customer(db, name="Asha Traders", status="active", email="asha@example.com", phone="9800000000"):
    customer = RentalCustomer(Name=name, Email=email, Phone=phone, Status=status)
    db.add(customer)
    db.flush()
    return customer


def add_rental_product(db, name="Camera", hourly=50, daily=400, monthly=6000):
    product = RentalProduct(
        Name=name,
        HourlyRate=hourly,
        DailyRate=daily,
        MonthlyRate=monthly,
        TotalQuantity=0,
        AvailableQuantity=0,
    )
    db.add(product)
    db.flush()
    return product


def add_unit(db, product, identifier, status="available", hourly=0, daily=0, monthly=0, archived=False):
    unit = InventoryUnit(
        RentalProductID=product.RentalProductID,
        UniqueIdentifier=identifier,
        Status=status,
        Condition="good",
        IsArchived=archived,
        HourlyRent=hourly,
        DailyRent=daily,
        MonthlyRent=monthly,
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(unit)
    db.flush()
    product.TotalQuantity = (product.TotalQuantity or 0) + (0 if archived else 1)
    if status == "available" and not archived:
        product.AvailableQuantity = (product.AvailableQuantity or 0) + 1
    return unit


def add_accessory(db, product, name="Charger", replacement_cost=200):
    accessory = Accessory(RentalProductID=product.RentalProductID, Name=name, ReplacementCost=replacement_cost)
    db.add(accessory)
    db.flush()
    return accessory


def add_stock_product(db, name="Tape", price=20, quantity=5):
    product = Product(Name=name, Price=price, Quantity=quantity)
    db.add(product)
    db.flush()
    return product


def add_account(db, name="Main Bank", status="active", opening=1000):
    account = PaymentAccount(
        Name=name,
        AccountType="bank",
        OpeningBalance=opening,
        CurrentBalance=opening,
        Status=status,
    )
    db.add(account)
    db.flush()
    return account


def seed_basic(db, unit_count=1, unit_hourly=50, customer_status="active"):
    """One customer, one camera product with units and a charger accessory."""
    customer = add_customer(db, status=customer_status)
    product = add_rental_product(db)
    units = [
        add_unit(db, product, f"CAM-{index:03d}", hourly=unit_hourly)
        for index in range(1, unit_count + 1)
    ]
    charger = add_accessory(db, product)
    db.commit()
    return SimpleNamespace(customer=customer, product=product, units=units, charger=charger)
