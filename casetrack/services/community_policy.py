# casetrack/services/community_policy.py
import logging
from typing import Any, Optional, Union

from bson import ObjectId

from casetrack.exceptions import InvalidInput, NotFound
from casetrack.models.case import CaseLocation, HealthFacility
from casetrack.schemas.hierarchy import LocationPath
from casetrack.services.hierarchy_store import normalize_name
from casetrack.services.location_service import LocationService

logger = logging.getLogger(__name__)

FacilityRef = Union[HealthFacility, ObjectId, str, None]


class CommunityResolutionPolicy:
    """
    Chooses the community a case is recorded against when an officer creates or
    edits it. The hierarchy grows from field data entry: resolving a case may
    create the region, district, sub-district and community it names.
    """

    def __init__(self, locations: LocationService):
        self.locations = locations
        self.store = locations.store

    async def load_facility(self, facility: FacilityRef) -> Optional[HealthFacility]:
        if facility is None or isinstance(facility, HealthFacility):
            return facility
        found = await self.store.get_facility(facility)
        if found is None:
            raise NotFound("Health facility", facility)
        return found

    async def resolve_community_for_case(
        self,
        community_name: Optional[str] = None,
        location: Union[LocationPath, dict, None] = None,
        facility: FacilityRef = None,
        use_facility_community: bool = False,
    ) -> Optional[ObjectId]:
        """
        Decision order:
          1. use_facility_community -> the facility's community, verbatim.
          2. blank community name -> the facility's community.
          3. location path with region and district -> find-or-create the path
             and the community under its most specific level.
          4. otherwise -> find-or-create the community under the facility's
             sub-district, or its district when it has none.
        """
        facility = await self.load_facility(facility)
        name = normalize_name(community_name)

        if use_facility_community or not name:
            if facility is None:
                raise InvalidInput(
                    "No community name given and no officer facility to fall back to.",
                    field="community",
                )
            return facility.community_id

        if isinstance(location, dict):
            location = LocationPath.model_validate(location)

        if location is not None and location.is_complete():
            community = await self._resolve_along_path(name, location)
            return community.id

        if facility is None:
            raise InvalidInput(
                "A location path (region and district) is required when the officer "
                "has no facility.",
                field="location",
            )
        if facility.sub_district_id is not None:
            community = await self.locations.find_or_create_community(
                name, sub_district_id=facility.sub_district_id
            )
        elif facility.district_id is not None:
            community = await self.locations.find_or_create_community(
                name, district_id=facility.district_id
            )
        else:
            raise InvalidInput(
                f"Health facility {facility.id} has no district or sub-district to "
                "place the community under.",
                field="facility",
            )
        return community.id

    async def _resolve_along_path(self, name: str, location: LocationPath):
        region = await self.locations.find_or_create_region(location.region)
        district = await self.locations.find_or_create_district(
            location.district, region.id
        )
        if normalize_name(location.sub_district):
            sub_district = await self.locations.find_or_create_sub_district(
                location.sub_district, district.id
            )
            return await self.locations.find_or_create_community(
                name, sub_district_id=sub_district.id
            )
        return await self.locations.find_or_create_community(
            name, district_id=district.id
        )

    async def build_case_location(self, community_id: Any) -> CaseLocation:
        """Snapshot of the hierarchy above a case's community, for storing on the case."""
        if community_id is None:
            return CaseLocation()
        return await self.locations.get_community_lineage(community_id)
