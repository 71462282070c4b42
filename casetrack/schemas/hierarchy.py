# casetrack/schemas/hierarchy.py
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class LocationPath(BaseModel):
    """Free-text location names a client sends alongside a community name."""

    region: Optional[str] = None
    district: Optional[str] = None
    sub_district: Optional[str] = Field(default=None, alias="subDistrict")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def is_complete(self) -> bool:
        """Region and district are both present and non-blank."""
        return bool(
            self.region and self.region.strip() and self.district and self.district.strip()
        )


class LocationNames(BaseModel):
    """Display names for a location, used by clients that show text, not ids."""

    region: Optional[str] = None
    district: Optional[str] = None
    sub_district: Optional[str] = Field(default=None, alias="subDistrict")
    community: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
