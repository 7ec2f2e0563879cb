"""
Database Schemas for the Fleet Check-in API

Each Pydantic model corresponds to a MongoDB collection. Validation runs on the
whole payload before anything is written, so a bad field rejects the record.
"""
import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NotificationStatus = Literal["en-route", "arrived", "delayed", "completed"]
NotificationPriority = Literal["low", "normal", "high", "urgent"]

FuelLevel = Literal["empty", "1/4", "1/2", "3/4", "full"]
UrgencyLevel = Literal["low", "medium", "high", "critical"]
InspectionStatus = Literal["pending", "reviewed", "action-required", "completed"]

ESCALATION_PATTERN = re.compile(r"urgent|critical", re.IGNORECASE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", allow_inf_nan=False)


class Notification(Record):
    """
    Driver status ping
    Collection name: "notifications"
    """
    driver: str = Field(..., min_length=1, description="Driver name")
    status: NotificationStatus = "en-route"
    location: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)
    estimatedArrival: Optional[str] = None
    warehouse: str = Field(..., min_length=1)
    isRead: bool = False
    priority: NotificationPriority = "normal"
    notes: Optional[str] = None


class Inspection(Record):
    """
    Vehicle condition report filed at check-in
    Collection name: "inspections"
    """
    driver: str = Field(..., min_length=1)
    checkInTime: datetime = Field(default_factory=utcnow)
    tractorNumber: str = Field(..., min_length=1)
    trailerNumber: str = Field(..., min_length=1)
    moffettNumber: Optional[str] = None
    odometerReading: float = Field(..., ge=0)
    fuelLevel: FuelLevel
    safetyChecks: List[str] = []
    equipmentChecks: List[str] = []
    damageFound: Optional[str] = None
    repairsNeeded: Optional[str] = None
    deliveryNotes: Optional[str] = None
    additionalComments: Optional[str] = None
    urgencyLevel: UrgencyLevel = "low"
    submittedAt: datetime = Field(default_factory=utcnow)
    status: InspectionStatus = "pending"

    @field_validator("tractorNumber", "trailerNumber", "moffettNumber")
    @classmethod
    def upper_case(cls, v):
        return v.upper() if v is not None else v

    @model_validator(mode="after")
    def escalate_urgency(self):
        # An explicit urgencyLevel always wins over the repairs text
        if "urgencyLevel" not in self.model_fields_set and self.repairsNeeded:
            if ESCALATION_PATTERN.search(self.repairsNeeded):
                self.urgencyLevel = "high"
        return self


class StatusPatch(BaseModel):
    status: InspectionStatus
