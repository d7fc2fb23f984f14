from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


def Money(**kwargs):
    return Column(Numeric(14, 2, asdecimal=False), **kwargs)


class RentalCustomer(Base):
    __tablename__ = "RentalCustomers"

    CustomerID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255))
    Phone = Column(String(50))
    Status = Column(String(20), default="active")
    CreatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer")


class RentalProduct(Base):
    __tablename__ = "RentalProducts"

    RentalProductID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Description = Column(String(1000))
    HourlyRate = Money(default=0)
    DailyRate = Money(default=0)
    MonthlyRate = Money(default=0)
    TotalQuantity = Column(Integer, default=0)
    AvailableQuantity = Column(Integer, default=0)
    Status = Column(String(20), default="active")
    CreatedDate = Column(DateTime, server_default=func.now())

    Units = relationship("InventoryUnit", back_populates="Product")
    Accessories = relationship("Accessory", back_populates="Product")


class Product(Base):
    __tablename__ = "Products"

    ProductID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Price = Money(default=0)
    Quantity = Column(Integer, nullable=False, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())


class Accessory(Base):
    __tablename__ = "Accessories"

    AccessoryID = Column(Integer, primary_key=True)
    RentalProductID = Column(Integer, ForeignKey("RentalProducts.RentalProductID"), nullable=False)
    Name = Column(String(255), nullable=False)
    Description = Column(String(500))
    IsRequired = Column(Boolean, default=False)
    ReplacementCost = Money(default=0)
    CreatedDate = Column(DateTime, server_default=func.now())

    Product = relationship("RentalProduct", back_populates="Accessories")


class InventoryUnit(Base):
    __tablename__ = "InventoryUnits"

    UnitID = Column(Integer, primary_key=True)
    RentalProductID = Column(Integer, ForeignKey("RentalProducts.RentalProductID"), nullable=False, index=True)
    UniqueIdentifier = Column(String(100), nullable=False, unique=True)
    SerialNumber = Column(String(200))
    Status = Column(String(20), nullable=False, default="available", index=True)
    Condition = Column(String(20), default="good")
    DamageReason = Column(String(500))
    IsArchived = Column(Boolean, nullable=False, default=False)
    HourlyRent = Money(default=0)
    DailyRent = Money(default=0)
    MonthlyRent = Money(default=0)
    PurchaseCost = Money()
    PurchaseDate = Column(DateTime)
    BatchNumber = Column(String(100))
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Product = relationship("RentalProduct", back_populates="Units")
    Accessories = relationship(
        "UnitAccessory",
        back_populates="Unit",
        cascade="all, delete-orphan",
        order_by="UnitAccessory.UnitAccessoryID",
    )
    History = relationship(
        "UnitHistory",
        back_populates="Unit",
        cascade="all, delete-orphan",
        order_by="UnitHistory.HistoryID",
    )
    RentalLines = relationship("RentalLineItem", back_populates="Unit")


class UnitAccessory(Base):
    __tablename__ = "UnitAccessories"

    UnitAccessoryID = Column(Integer, primary_key=True)
    UnitID = Column(Integer, ForeignKey("InventoryUnits.UnitID"), nullable=False)
    AccessoryID = Column(Integer, ForeignKey("Accessories.AccessoryID"), nullable=False)
    Name = Column(String(255), nullable=False)
    SerialNumber = Column(String(200))
    Condition = Column(String(20), default="good")
    IsIncluded = Column(Boolean, default=True)
    Status = Column(String(20), default="with_item")

    Unit = relationship("InventoryUnit", back_populates="Accessories")
    Accessory = relationship("Accessory")


class UnitHistory(Base):
    __tablename__ = "UnitHistory"

    HistoryID = Column(Integer, primary_key=True)
    UnitID = Column(Integer, ForeignKey("InventoryUnits.UnitID"), nullable=False, index=True)
    Action = Column(String(40), nullable=False)
    Details = Column(String(1000))
    PerformedBy = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())

    Unit = relationship("InventoryUnit", back_populates="History")


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    RentalNumber = Column(String(20), nullable=False, unique=True)
    CustomerID = Column(Integer, ForeignKey("RentalCustomers.CustomerID"), nullable=False)
    Status = Column(String(20), nullable=False, default="active")
    OutTime = Column(DateTime, nullable=False)
    ExpectedReturnTime = Column(DateTime)
    ReturnTime = Column(DateTime)
    AdvancePayment = Money(default=0)
    AccessoriesPayment = Money(default=0)
    TotalAmount = Money(default=0)
    BillID = Column(Integer, ForeignKey("Bills.BillID"))
    Notes = Column(String(1000))
    CreatedBy = Column(Integer)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("RentalCustomer", back_populates="Rentals")
    Items = relationship(
        "RentalLineItem",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalLineItem.LineID",
    )
    SoldItems = relationship(
        "RentalSoldItem",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalSoldItem.SoldItemID",
    )
    FinalBill = relationship("Bill", foreign_keys=[BillID])


class RentalLineItem(Base):
    __tablename__ = "RentalLineItems"

    LineID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    UnitID = Column(Integer, ForeignKey("InventoryUnits.UnitID"), nullable=False)
    RentAtTime = Money(nullable=False)
    RentType = Column(String(20), nullable=False)
    ReturnCondition = Column(String(20))
    DamageCost = Money(default=0)
    ItemCost = Money()

    Rental = relationship("Rental", back_populates="Items")
    Unit = relationship("InventoryUnit", back_populates="RentalLines")
    Accessories = relationship(
        "RentalLineAccessory",
        back_populates="Line",
        cascade="all, delete-orphan",
        order_by="RentalLineAccessory.LineAccessoryID",
    )


class RentalLineAccessory(Base):
    __tablename__ = "RentalLineAccessories"

    LineAccessoryID = Column(Integer, primary_key=True)
    LineID = Column(Integer, ForeignKey("RentalLineItems.LineID"), nullable=False)
    AccessoryID = Column(Integer, ForeignKey("Accessories.AccessoryID"))
    Name = Column(String(255))
    SerialNumber = Column(String(200))
    CheckedOutCondition = Column(String(20))
    Status = Column(String(20), default="with_item")

    Line = relationship("RentalLineItem", back_populates="Accessories")


class RentalSoldItem(Base):
    __tablename__ = "RentalSoldItems"

    SoldItemID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    Quantity = Column(Integer, nullable=False)
    Price = Money(nullable=False)
    Total = Money(nullable=False)

    Rental = relationship("Rental", back_populates="SoldItems")
    Product = relationship("Product")


class Bill(Base):
    __tablename__ = "Bills"

    BillID = Column(Integer, primary_key=True)
    BillNumber = Column(String(20), nullable=False, unique=True)
    BillType = Column(String(20), nullable=False, default="rental")
    RentalID = Column(Integer, index=True)
    CustomerID = Column(Integer, ForeignKey("RentalCustomers.CustomerID"))
    CustomerName = Column(String(255))
    CustomerEmail = Column(String(255))
    CustomerPhone = Column(String(50))
    RentalDurationHours = Column(Integer)
    DamageCost = Money(default=0)
    Subtotal = Money(default=0)
    DiscountPercent = Money(default=0)
    Discount = Money(default=0)
    TaxPercent = Money(default=0)
    TaxAmount = Money(default=0)
    SystemCalculatedAmount = Money(default=0)
    CustomizedAmount = Money(default=0)
    TotalAmount = Money(default=0)
    PaidAmount = Money(default=0)
    DueAmount = Money(default=0)
    ExcessAmount = Money(default=0)
    PaymentStatus = Column(String(20), nullable=False, default="pending")
    PaymentMethod = Column(String(40), default="cash")
    CreatedBy = Column(Integer)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Items = relationship(
        "BillItem",
        back_populates="Bill",
        cascade="all, delete-orphan",
        order_by="BillItem.BillItemID",
    )
    Payments = relationship(
        "BillPayment",
        back_populates="Bill",
        cascade="all, delete-orphan",
        order_by="BillPayment.PaymentID",
    )


class BillItem(Base):
    __tablename__ = "BillItems"

    BillItemID = Column(Integer, primary_key=True)
    BillID = Column(Integer, ForeignKey("Bills.BillID"), nullable=False)
    ItemType = Column(String(20), nullable=False)
    ReferenceID = Column(Integer)
    Name = Column(String(500), nullable=False)
    Quantity = Column(Integer, default=1)
    Price = Money(default=0)
    Total = Money(default=0)

    Bill = relationship("Bill", back_populates="Items")


class BillPayment(Base):
    __tablename__ = "BillPayments"

    PaymentID = Column(Integer, primary_key=True)
    BillID = Column(Integer, ForeignKey("Bills.BillID"), nullable=False)
    Amount = Money(nullable=False)
    PaymentMethod = Column(String(40), default="cash")
    AccountID = Column(Integer, ForeignKey("PaymentAccounts.AccountID"))
    Direction = Column(String(10), default="credit")
    PaymentDate = Column(DateTime, nullable=False)
    Notes = Column(String(1000))
    RecordedBy = Column(Integer)

    Bill = relationship("Bill", back_populates="Payments")
    Account = relationship("PaymentAccount")


class PaymentAccount(Base):
    __tablename__ = "PaymentAccounts"

    AccountID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False, unique=True)
    AccountType = Column(String(20), nullable=False)
    AccountNumber = Column(String(100))
    BankName = Column(String(255))
    IfscCode = Column(String(50))
    UpiId = Column(String(255))
    OpeningBalance = Money(default=0)
    CurrentBalance = Money(default=0)
    Status = Column(String(20), nullable=False, default="active")
    Description = Column(String(1000))
    CreatedBy = Column(Integer)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())


class SequenceCounter(Base):
    __tablename__ = "SequenceCounters"

    Name = Column(String(50), primary_key=True)
    CurrentValue = Column(Integer, nullable=False, default=0)


class Notification(Base):
    __tablename__ = "Notifications"

    NotificationID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, index=True)
    NotificationType = Column(String(50), nullable=False)
    Message = Column(String(2000))
    IsRead = Column(Boolean, nullable=False, default=False)
    CreatedAt = Column(DateTime, server_default=func.now())
    ReadAt = Column(DateTime)


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
