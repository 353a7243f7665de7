import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Integer, String
from invoicing.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    gateway_invoice_id = Column(String, nullable=True, index=True)   # set once the gateway accepts the invoice
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.PENDING)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class GatewayCredential(Base):
    __tablename__ = "gateway_credentials"

    account = Column(String, primary_key=True)                        # one row per upstream account
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=True)
    expires_in = Column(Integer, nullable=False)
    refresh_expires_in = Column(Integer, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
