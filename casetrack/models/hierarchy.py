# casetrack/models/hierarchy.py
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from beanie import PydanticObjectId


# --- Hierarchy levels (fixed depth) ---
class HierarchyLevel(str, Enum):
    """The four levels of the administrative geography, root first."""

    REGION = "region"
    DISTRICT = "district"
    SUB_DISTRICT = "subDistrict"
    COMMUNITY = "community"

    @property
    def label(self) -> str:
        return {
            HierarchyLevel.REGION: "Region",
            HierarchyLevel.DISTRICT: "District",
            HierarchyLevel.SUB_DISTRICT: "Sub-district",
            HierarchyLevel.COMMUNITY: "Community",
        }[self]


class HierarchyNode(BaseModel):
    """
    Common shape of a stored hierarchy node. Documents are read straight from
    MongoDB, so field aliases match the stored field names.
    """

    id: PydanticObjectId = Field(alias="_id")
    name: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Region(HierarchyNode):
    pass


class District(HierarchyNode):
    region_id: PydanticObjectId = Field(alias="region")


class SubDistrict(HierarchyNode):
    district_id: PydanticObjectId = Field(alias="district")


class Community(HierarchyNode):
    # A community sits directly under a District OR under a SubDistrict
    district_id: Optional[PydanticObjectId] = Field(default=None, alias="district")
    sub_district_id: Optional[PydanticObjectId] = Field(
        default=None, alias="subDistrict"
    )


NODE_MODELS = {
    HierarchyLevel.REGION: Region,
    HierarchyLevel.DISTRICT: District,
    HierarchyLevel.SUB_DISTRICT: SubDistrict,
    HierarchyLevel.COMMUNITY: Community,
}
