import json
import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_qpay_client
from app.db.session import get_db, get_session_factory
from app.schemas.payments import QPayInvoiceRequest, QPayInvoiceOut, QPayCheckRequest, QPayCheckOut
from app.services.errors import BookingError, ValidationError, NotFoundError, GatewayError
from app.services.qpay_client import QPayClient
from app.services.qpay_intent_service import create_invoice_intent, check_intent, confirm_intent_from_callback
from app.services.reconcile_service import confirm_from_callback

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _callback_params(req: Request) -> dict:
    """Query string merged over a JSON or form body; none of it is trusted."""
    params: dict = {}
    if req.method == "POST":
        raw = await req.body()
        if raw and req.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
            try:
                params.update(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
            except UnicodeDecodeError:
                logger.info("QPay callback form body is not UTF-8 (%d bytes)", len(raw))
        elif raw:
            try:
                body = json.loads(raw.decode("utf-8"))
                if isinstance(body, dict):
                    params.update(body)
            except (UnicodeDecodeError, ValueError):
                logger.info("QPay callback body is not JSON (%d bytes)", len(raw))
    params.update(dict(req.query_params))
    return params


def _reconcile_booking_callback(session_factory, client: QPayClient, booking_id: int | None, token: str | None) -> None:
    db = session_factory()
    try:
        result = confirm_from_callback(db, client, booking_id, token)
        logger.info("QPay booking callback %s -> %s", booking_id, result.status.value)
    except BookingError as e:
        logger.warning("QPay booking callback %s ignored: %s (%s)", booking_id, e, e.code)
    except Exception:
        logger.exception("QPay booking callback %s failed", booking_id)
    finally:
        db.close()


def _reconcile_intent_callback(session_factory, client: QPayClient, qpay_invoice_id: str | None) -> None:
    db = session_factory()
    try:
        intent = confirm_intent_from_callback(db, client, qpay_invoice_id)
        if intent is not None:
            logger.info("QPay callback for invoice %s -> %s", qpay_invoice_id, intent.status)
    except BookingError as e:
        logger.warning("QPay callback for invoice %s ignored: %s (%s)", qpay_invoice_id, e, e.code)
    except Exception:
        logger.exception("QPay callback for invoice %s failed", qpay_invoice_id)
    finally:
        db.close()


@router.api_route("/gateway/booking/callback", methods=["GET", "POST"])
async def qpay_booking_callback(
    req: Request,
    background: BackgroundTasks,
    client: QPayClient = Depends(get_qpay_client),
    session_factory=Depends(get_session_factory),
):
    """Always 200 to QPay; the deposit is re-checked against the gateway afterwards."""
    params = await _callback_params(req)
    booking_id = _as_int(params.get("bookingId"))
    token = params.get("token")
    logger.info("QPay booking callback (%s) bookingId=%s payment_id=%s", req.method, booking_id, params.get("payment_id"))
    background.add_task(_reconcile_booking_callback, session_factory, client, booking_id, token)
    return {"success": True}


@router.api_route("/gateway/callback", methods=["GET", "POST"])
async def qpay_callback(
    req: Request,
    background: BackgroundTasks,
    client: QPayClient = Depends(get_qpay_client),
    session_factory=Depends(get_session_factory),
):
    params = await _callback_params(req)
    invoice_id = params.get("invoice_id")
    logger.info("QPay callback (%s) invoice_id=%s payment_id=%s", req.method, invoice_id, params.get("payment_id"))
    background.add_task(_reconcile_intent_callback, session_factory, client, str(invoice_id) if invoice_id else None)
    return {"success": True}


@router.post("/gateway/invoice", response_model=QPayInvoiceOut)
def create_qpay_invoice(body: QPayInvoiceRequest, db: Session = Depends(get_db), client: QPayClient = Depends(get_qpay_client)):
    try:
        intent, presentation = create_invoice_intent(db, client, body.invoiceId, body.amount, body.description)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return QPayInvoiceOut(
        qpayInvoiceId=intent.qpay_invoice_id,
        senderInvoiceNo=intent.sender_invoice_no,
        amount=intent.amount,
        **presentation,
    )


@router.post("/gateway/check", response_model=QPayCheckOut)
def check_qpay_invoice(body: QPayCheckRequest, db: Session = Depends(get_db), client: QPayClient = Depends(get_qpay_client)):
    try:
        intent, check = check_intent(db, client, body.qpayInvoiceId)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="QPay intent not found")
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if check is None:
        return QPayCheckOut(status=intent.status, paid=True, paidAmount=intent.paid_amount or 0, paymentId=intent.qpay_payment_id)
    return QPayCheckOut(
        status=intent.status,
        paid=check.paid,
        paidAmount=int(check.paid_amount),
        paymentId=check.payment_id,
        transactionType=check.transaction_type,
        paidAt=check.paid_at.isoformat() if check.paid_at else None,
    )
