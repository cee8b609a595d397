from pydantic import BaseModel
from typing import List, Optional


class BranchOut(BaseModel):
    id: int
    name: str
    address: Optional[str] = None


class GridDoctorOut(BaseModel):
    id: int
    name: str
    scheduleStart: str
    scheduleEnd: str


class BookingGridOut(BaseModel):
    doctors: List[GridDoctorOut]
    slots: List[str]
    busy: List[str]  # "doctorId:HH:MM"
    durationMinutes: int
