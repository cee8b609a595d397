from pydantic import BaseModel
from typing import Optional, List


class QPayInvoiceRequest(BaseModel):
    invoiceId: int
    amount: int
    description: Optional[str] = None


class QPayInvoiceOut(BaseModel):
    qpayInvoiceId: str
    senderInvoiceNo: str
    amount: int
    qrText: str = ""
    qrImage: str = ""
    urls: List[dict] = []


class QPayCheckRequest(BaseModel):
    qpayInvoiceId: str


class QPayCheckOut(BaseModel):
    status: str
    paid: bool
    paidAmount: int = 0
    paymentId: Optional[str] = None
    transactionType: Optional[str] = None
    paidAt: Optional[str] = None
