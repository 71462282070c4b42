# casetrack/models/case.py
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from beanie import PydanticObjectId


class CaseStatus(str, Enum):
    SUSPECTED = "suspected"
    CONFIRMED = "confirmed"
    NOT_A_CASE = "not a case"


class PatientStatus(str, Enum):
    """Patient outcome buckets counted by the case summary."""

    RECOVERED = "Recovered"
    ONGOING_TREATMENT = "Ongoing treatment"
    DECEASED = "Deceased"


class HealthFacility(BaseModel):
    """
    A facility anchored in the geography. Only its references matter here:
    officers fall back to its community, and the repair pass repoints it.
    """

    id: PydanticObjectId = Field(alias="_id")
    name: Optional[str] = None
    region_id: Optional[PydanticObjectId] = Field(default=None, alias="region")
    district_id: Optional[PydanticObjectId] = Field(default=None, alias="district")
    sub_district_id: Optional[PydanticObjectId] = Field(
        default=None, alias="subDistrict"
    )
    community_id: Optional[PydanticObjectId] = Field(default=None, alias="community")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CaseType(BaseModel):
    id: PydanticObjectId = Field(alias="_id")
    name: str
    archived: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CaseLocation(BaseModel):
    """
    Denormalised location snapshot stored on a case. Derived from the hierarchy
    and never used to enforce it.
    """

    region_id: Optional[PydanticObjectId] = Field(default=None, alias="region")
    district_id: Optional[PydanticObjectId] = Field(default=None, alias="district")
    sub_district_id: Optional[PydanticObjectId] = Field(
        default=None, alias="subDistrict"
    )
    community_id: Optional[PydanticObjectId] = Field(default=None, alias="community")

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
