from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_qpay_client
from app.db.session import get_db
from app.schemas.booking import OnlineHoldCreate, OnlineHoldOut, PaymentStatusOut
from app.services.booking_service import create_hold, CustomerFields
from app.services.errors import ValidationError, ConflictError, NotFoundError, GatewayError
from app.services.qpay_client import QPayClient
from app.services.reconcile_service import reconcile

router = APIRouter(tags=["online-bookings"])


@router.post("/bookings/online/hold", response_model=OnlineHoldOut, status_code=201)
def create_online_hold(body: OnlineHoldCreate, db: Session = Depends(get_db), client: QPayClient = Depends(get_qpay_client)):
    try:
        hold = create_hold(
            db,
            client,
            doctor_id=body.doctorId,
            branch_id=body.branchId,
            day=body.date,
            start_time=body.startTime,
            end_time=body.endTime,
            customer=CustomerFields(ovog=body.ovog, name=body.name, phone=body.phone, reg_no=body.regNo, note=body.note or ""),
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": e.code, **e.details})
    except ConflictError as e:
        raise HTTPException(status_code=409, detail={"error": str(e), "code": e.code})
    except GatewayError as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "code": e.code})

    return OnlineHoldOut(
        bookingId=hold.booking_id,
        expiresAt=hold.expires_at.isoformat(),
        amount=hold.amount,
        gatewayInvoiceId=hold.qpay_invoice_id,
        qrText=hold.qr_text,
        qrImage=hold.qr_image,
        urls=hold.urls,
    )


@router.get("/bookings/online/{booking_id}/payment-status", response_model=PaymentStatusOut, response_model_exclude_none=True)
def online_payment_status(booking_id: int, db: Session = Depends(get_db), client: QPayClient = Depends(get_qpay_client)):
    try:
        result = reconcile(db, client, booking_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Deposit not found")
    except GatewayError as e:
        raise HTTPException(status_code=502, detail={"error": str(e), "code": e.code})
    return PaymentStatusOut(
        status=result.status.value,
        bookingStatus=result.booking_status.value if result.booking_status else None,
        expiresAt=result.expires_at.isoformat() if result.expires_at else None,
    )
