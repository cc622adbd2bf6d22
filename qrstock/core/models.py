import time
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProductRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    quantity: int = Field(ge=0)
    encoded_image: Optional[str] = Field(default=None, alias="encodedImage")

    @field_validator('quantity', mode='before')
    @classmethod
    def _reject_bool(cls, v):
        # bool is an int subclass; true must not read as one unit
        if isinstance(v, bool):
            raise ValueError("quantity must be an integer, not a boolean")
        return v

    @field_validator('id', 'name')
    @classmethod
    def _strip_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def to_wire(self) -> Dict[str, Any]:
        """Record shape used by the synchronized store."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ScanFailure(str, Enum):
    NOT_FOUND = "not_found"
    OUT_OF_STOCK = "out_of_stock"


class ScanState(str, Enum):
    IDLE = "Idle"
    REQUESTING_PERMISSION = "RequestingPermission"
    ACTIVE = "Active"
    COOLDOWN = "Cooldown"
    STOPPED = "Stopped"
    ERROR = "Error"


class DecrementResult(BaseModel):
    success: bool
    record: Optional[ProductRecord] = None
    reason: Optional[ScanFailure] = None


class ScanOutcome(BaseModel):
    identifier: str
    success: bool
    message: str
    source: str = "camera" # camera | manual
    record: Optional[ProductRecord] = None
    reason: Optional[ScanFailure] = None


class ScanEvent(BaseModel):
    type: str # state_changed | scan_result | scan_suppressed | error
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
