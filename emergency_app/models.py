from datetime import datetime
from typing import Optional, Literal, Any, Dict, List

from pydantic import BaseModel, Field, field_validator

SourceTag = Literal["dispatch-table", "geo-feature"]


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class Location(BaseModel):
    region: str = ""
    province: str = ""
    district: str = ""
    free_text_address: str = ""


class AffectedCounts(BaseModel):
    deaths: int = Field(default=0, ge=0)
    injured: int = Field(default=0, ge=0)
    missing: int = Field(default=0, ge=0)
    displaced: int = Field(default=0, ge=0)
    affected_total: int = Field(default=0, ge=0)
    housing_units: int = Field(default=0, ge=0)


class EmergencyRecord(BaseModel):
    id: str
    source_reference_code: str
    classified_type: str
    raw_phenomenon_text: str = ""
    description: str = ""
    location: Location = Field(default_factory=Location)
    coordinates: Optional[Coordinates] = None
    occurred_at: datetime
    # true when the upstream time was unparsable and "now" was substituted
    occurred_at_is_fallback: bool = False
    affected_counts: Optional[AffectedCounts] = None  # geo-feature source only
    source_tag: SourceTag

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("id must be non-empty")
        return v


class CacheEntry(BaseModel):
    model_config = {"frozen": True}

    data: tuple[EmergencyRecord, ...]
    fetched_at: datetime


# ---- cameras (shape only; listing lives in the presentation layer) ----

CameraStatus = Literal["Operational", "NotOperational", "Maintenance"]
CameraCategory = Literal["Surveillance", "Traffic"]


class SpecialProvider(BaseModel):
    provider: Literal["SkylineWebcams"]
    url: str  # provider page; needs a PHPSESSID negotiated server-side


class CameraRecord(BaseModel):
    id: str
    name: str
    address: str = ""
    coordinates: Coordinates
    status: CameraStatus
    category: CameraCategory
    stream_url: Optional[str] = None
    special_provider: Optional[SpecialProvider] = None


# ---- HTTP envelopes ----

class FeedEnvelope(BaseModel):
    success: bool
    count: int
    data: List[EmergencyRecord]
    source: Optional[str] = None
    cache_age: Optional[str] = Field(default=None, serialization_alias="cacheAge")
    timestamp: Optional[datetime] = None
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
