from pydantic import BaseModel, Field
from typing import List, Optional

class OnlineHoldCreate(BaseModel):
    branchId: int
    doctorId: int
    date: str  # YYYY-MM-DD
    startTime: str  # HH:MM
    endTime: str  # HH:MM
    ovog: str = Field(min_length=1)
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    regNo: str = Field(min_length=1)
    note: Optional[str] = ""

class OnlineHoldOut(BaseModel):
    bookingId: int
    expiresAt: str
    amount: int
    gatewayInvoiceId: str
    qrText: str = ""
    qrImage: str = ""
    urls: List[dict] = []  # bank app deep links: name, description, logo, link

class PaymentStatusOut(BaseModel):
    status: str  # PENDING|PAID|EXPIRED|CANCELLED
    bookingStatus: Optional[str] = None
    expiresAt: Optional[str] = None
