"""Pydantic models for patient records and request bodies.

Sanitization is not done here; the service sanitizes before writing.
"""
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from typing import Annotated, List, Optional, Tuple, Union

Timestamp = Union[int, float]
# Readers send epoch milliseconds; bools, numeric strings and NaN/Infinity
# would corrupt the admission check and the JSON output
PingTimestamp = Union[StrictInt, Annotated[float, Field(strict=True, allow_inf_nan=False)]]
LocationEntry = Tuple[Timestamp, str]


class PatientCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: StrictStr = Field(..., min_length=1)
    id: StrictStr = Field(..., min_length=1)
    tagId: Optional[StrictStr] = Field(None, min_length=1)


class PatientUpdate(BaseModel):
    # id is immutable, so it is not accepted here
    model_config = ConfigDict(extra="forbid")

    name: Optional[StrictStr] = Field(None, min_length=1)
    tagId: Optional[StrictStr] = Field(None, min_length=1)


class LocationPing(BaseModel):
    timestamp: PingTimestamp
    location: StrictStr = Field(..., min_length=1)


class Patient(BaseModel):
    name: str
    id: str
    tagId: Optional[str] = None
    locations: List[LocationEntry] = []
