from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class Dealer(Base):
    __tablename__ = "Dealers"

    DealerID = Column(Integer, primary_key=True)
    Name = Column(String(100), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    Phone = Column(String(50))
    BusinessName = Column(String(200))
    PasswordHash = Column(String(256))
    PasswordSalt = Column(String(64))
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())


class Customer(Base):
    __tablename__ = "Customers"
    __table_args__ = (
        Index("ix_customers_dealer_name", "DealerID", "Name"),
        Index("ix_customers_dealer_email", "DealerID", "Email"),
    )

    CustomerID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    Name = Column(String(100), nullable=False)
    ContactNumber = Column(String(50), nullable=False)
    Email = Column(String(255))
    BusinessType = Column(String(50), nullable=False)
    TotalRentals = Column(Integer, nullable=False, default=0)
    TotalOutstandingDue = Column(Numeric(12, 2), nullable=False, default=0)
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer")
    Payments = relationship("PaymentRecord", back_populates="Customer")


class Machine(Base):
    __tablename__ = "Machines"
    __table_args__ = (
        Index("ix_machines_dealer_status", "DealerID", "Status"),
        Index("ix_machines_dealer_type", "DealerID", "MachineType"),
    )

    MachineID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    MachineName = Column(String(255), nullable=False)
    MachineType = Column(String(50), nullable=False)
    Model = Column(String(255), nullable=False)
    SerialNumber = Column(String(255))
    Year = Column(Integer)
    DailyRate = Column(Numeric(12, 2), nullable=False, default=0)
    Status = Column(String(30), nullable=False, default="available")
    # Not a declared foreign key: Rentals already references Machines.
    CurrentRentalID = Column(Integer)
    ExpectedReturnDate = Column(Date)
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Machine", foreign_keys="Rental.MachineID")


class Vehicle(Base):
    __tablename__ = "Vehicles"
    __table_args__ = (
        Index("ix_vehicles_dealer_status", "DealerID", "Status"),
        Index("ix_vehicles_dealer_number", "DealerID", "VehicleNumber", unique=True),
    )

    VehicleID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    VehicleNumber = Column(String(50), nullable=False)
    VehicleType = Column(String(50), nullable=False)
    Model = Column(String(255), nullable=False)
    Manufacturer = Column(String(255))
    Year = Column(Integer)
    SerialNumber = Column(String(255))
    Condition = Column(String(30), default="good")
    DailyRate = Column(Numeric(12, 2))
    Status = Column(String(30), nullable=False, default="available")
    CurrentRentalID = Column(Integer)
    ExpectedReturnDate = Column(Date)
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Vehicle", foreign_keys="Rental.VehicleID")


class Rental(Base):
    __tablename__ = "Rentals"
    __table_args__ = (
        Index("ix_rentals_dealer_customer", "DealerID", "CustomerID"),
        Index("ix_rentals_dealer_status", "DealerID", "Status"),
        Index("ux_rentals_dealer_number", "DealerID", "RentalNumber", unique=True),
    )

    RentalID = Column(Integer, primary_key=True)
    RentalNumber = Column(String(50), nullable=False)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False)
    MachineID = Column(Integer, ForeignKey("Machines.MachineID"))
    VehicleID = Column(Integer, ForeignKey("Vehicles.VehicleID"))
    RentedOn = Column(DateTime, nullable=False)
    ReturnedOn = Column(DateTime)
    ReturnCondition = Column(String(20))
    RentalAmount = Column(Numeric(12, 2), nullable=False)
    SecurityDeposit = Column(Numeric(12, 2), nullable=False, default=0)
    Notes = Column(String(1000))
    Status = Column(String(20), nullable=False, default="active")
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("Customer", back_populates="Rentals")
    Machine = relationship("Machine", back_populates="Rentals", foreign_keys=[MachineID])
    Vehicle = relationship("Vehicle", back_populates="Rentals", foreign_keys=[VehicleID])
    Payments = relationship("PaymentRecord", back_populates="Rental", order_by="PaymentRecord.PaymentID")


class PaymentRecord(Base):
    __tablename__ = "PaymentRecords"
    __table_args__ = (
        Index("ix_payments_dealer_customer", "DealerID", "CustomerID"),
        Index("ix_payments_dealer_date", "DealerID", "PaymentDate"),
    )

    PaymentID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False)
    # Cancelled rentals are voided, never deleted, so this reference stays valid.
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    AmountPaid = Column(Numeric(12, 2), nullable=False, default=0)
    OutstandingDue = Column(Numeric(12, 2), nullable=False, default=0)
    PaymentDate = Column(DateTime, nullable=False)
    PaymentMethod = Column(String(30), nullable=False, default="cash")
    TransactionReference = Column(String(200))
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("Customer", back_populates="Payments")
    Rental = relationship("Rental", back_populates="Payments")


class Alert(Base):
    __tablename__ = "Alerts"

    AlertID = Column(Integer, primary_key=True)
    AlertNumber = Column(String(60), nullable=False)
    DealerID = Column(Integer, ForeignKey("Dealers.DealerID"), nullable=False, index=True)
    AlertType = Column(String(50), nullable=False)
    Priority = Column(String(20), nullable=False, default="Medium")
    Title = Column(String(255), nullable=False)
    Message = Column(String(2000))
    EntityType = Column(String(50))
    EntityID = Column(Integer)
    Status = Column(String(20), nullable=False, default="Active")
    DueDate = Column(Date)
    CreatedAt = Column(DateTime, server_default=func.now())
    AcknowledgedAt = Column(DateTime)
    ResolvedAt = Column(DateTime)
    ActionNotes = Column(String(1000))


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    DealerID = Column(Integer)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
