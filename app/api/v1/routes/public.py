from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.branch import Branch
from app.schemas.public import BranchOut, BookingGridOut
from app.services.booking_service import parse_day
from app.services.errors import ValidationError
from app.services.slot_service import booking_grid

router = APIRouter(tags=["public"])


@router.get("/public/branches", response_model=list[BranchOut])
def list_branches(db: Session = Depends(get_db)):
    items = db.execute(select(Branch).order_by(Branch.id)).scalars().all()
    return [BranchOut(id=b.id, name=b.name, address=b.address) for b in items]


@router.get("/public/booking-grid", response_model=BookingGridOut)
def get_booking_grid(
    branchId: int,
    date: str,
    durationMinutes: int = Query(30, ge=5, le=480),
    db: Session = Depends(get_db),
):
    """Online booking grid. A doctor/start pair is busy while any booking other than an expired online hold holds it."""
    try:
        day = parse_day(date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return booking_grid(db, branch_id=branchId, day=day, duration_minutes=durationMinutes)
