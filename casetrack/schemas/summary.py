# casetrack/schemas/summary.py
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from beanie import PydanticObjectId


class SummaryFilters(BaseModel):
    """
    Optional filters for the case-type summary. Every value is taken verbatim
    from the caller and may be either an identifier or a free-text name.
    """

    case_type: Optional[str] = Field(default=None, alias="caseType")
    region: Optional[str] = None
    district: Optional[str] = None
    sub_district: Optional[str] = Field(default=None, alias="subDistrict")
    community: Optional[str] = None
    facility: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def has_geography(self) -> bool:
        return any([self.region, self.district, self.sub_district])


class OutcomeBreakdown(BaseModel):
    total: int = 0
    recovered: int = 0
    ongoing_treatment: int = 0
    deceased: int = 0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CaseTypeSummary(BaseModel):
    case_type_id: Optional[PydanticObjectId] = None
    name: Optional[str] = None
    total: int = 0
    confirmed: OutcomeBreakdown = Field(default_factory=OutcomeBreakdown)
    suspected: OutcomeBreakdown = Field(default_factory=OutcomeBreakdown)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
