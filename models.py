from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Gender = Literal["Male", "Female", "Other"]


class CamelModel(BaseModel):
    # Wire format is camelCase (certId, vaccineType, ...); Python code uses snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class VaccinationPayload(CamelModel):
    """Registration form as submitted. Presence of required fields is checked by the service."""

    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[Gender] = None
    state: Optional[str] = None
    district: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    vaccine_type: Optional[str] = None
    dose: Optional[str] = None
    date_administered: Optional[str] = None
    administering_officer: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("dose", mode="before")
    @classmethod
    def dose_as_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class BulkVaccinationPayload(VaccinationPayload):
    cert_id: Optional[str] = None


class VaccinationRecord(CamelModel):
    cert_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[Gender] = None
    state: str
    district: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    vaccine_type: Optional[str] = None
    dose: Optional[str] = None
    date_administered: Optional[str] = None
    administering_officer: Optional[str] = None
    created_at: str


class StateCount(CamelModel):
    state: str
    count: int


class DistrictCount(CamelModel):
    state: str
    district: str
    count: int


class DashboardStats(CamelModel):
    total_vaccinations: int
    vaccine_types: Dict[str, int]
    dose_distribution: Dict[str, int]
    monthly_data: Dict[str, int]
    state_heatmap_data: List[StateCount]
    district_heatmap_data: List[DistrictCount]


class BulkImportResult(CamelModel):
    inserted: int
    errors: int

    @property
    def message(self) -> str:
        return f"Inserted {self.inserted} records, {self.errors} errors"
