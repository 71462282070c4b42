# casetrack/services/location_service.py
import logging
from typing import Any, Dict, Optional

from casetrack.exceptions import InvalidInput, NotFound
from casetrack.models.case import CaseLocation, HealthFacility
from casetrack.models.hierarchy import (
    Community,
    District,
    HierarchyLevel,
    HierarchyNode,
    Region,
    SubDistrict,
)
from casetrack.schemas.hierarchy import LocationNames
from casetrack.services.hierarchy_store import (
    HierarchyStore,
    is_object_id,
    normalize_name,
)
from casetrack.services.name_resolver import NameResolver

logger = logging.getLogger(__name__)


class LocationService:
    """
    Find-or-create for the four hierarchy levels plus read accessors.

    The lookup-then-insert sequence is not atomic. Two writers racing on the same
    new (name, parent) pair can both insert; the community repair pass merges the
    resulting duplicates.
    """

    def __init__(self, store: HierarchyStore, resolver: Optional[NameResolver] = None):
        self.store = store
        self.resolver = resolver or NameResolver(store)

    # --- find-or-create ---
    async def find_or_create(
        self,
        level: HierarchyLevel,
        name: Any,
        *,
        region_id: Any = None,
        district_id: Any = None,
        sub_district_id: Any = None,
    ) -> HierarchyNode:
        """
        Returns the node named `name` under the given parent, creating it when
        absent. An existing node is returned unchanged (stored casing is kept).
        """
        name = normalize_name(name)
        if not name:
            raise InvalidInput(f"{level.label} name is required.", field=level.value)

        parents = await self._validated_parents(
            level, region_id, district_id, sub_district_id
        )

        existing = await self.store.find_by_name(level, name, parents)
        if existing:
            return existing

        # communities persist the given parent and null the other one
        if level == HierarchyLevel.COMMUNITY:
            parents = {
                "district": parents.get("district"),
                "subDistrict": parents.get("subDistrict"),
            }
        return await self.store.insert(level, name, parents)

    async def _validated_parents(
        self,
        level: HierarchyLevel,
        region_id: Any,
        district_id: Any,
        sub_district_id: Any,
    ) -> Dict[str, Any]:
        if level == HierarchyLevel.REGION:
            return {}
        if level == HierarchyLevel.DISTRICT:
            parent = await self._require_parent(HierarchyLevel.REGION, region_id, level)
            return {"region": parent.id}
        if level == HierarchyLevel.SUB_DISTRICT:
            parent = await self._require_parent(
                HierarchyLevel.DISTRICT, district_id, level
            )
            return {"district": parent.id}

        if district_id is not None and sub_district_id is not None:
            raise InvalidInput(
                "A community belongs to a district or a sub-district, not both.",
                field="community",
            )
        if sub_district_id is not None:
            parent = await self._require_parent(
                HierarchyLevel.SUB_DISTRICT, sub_district_id, level
            )
            return {"subDistrict": parent.id}
        parent = await self._require_parent(HierarchyLevel.DISTRICT, district_id, level)
        return {"district": parent.id}

    async def _require_parent(
        self, parent_level: HierarchyLevel, parent_id: Any, child_level: HierarchyLevel
    ) -> HierarchyNode:
        if parent_id is None:
            raise InvalidInput(
                f"{child_level.label} requires a {parent_level.label.lower()}.",
                field=parent_level.value,
            )
        if not is_object_id(parent_id):
            raise InvalidInput(
                f"Malformed {parent_level.label.lower()} id '{parent_id}'.",
                field=parent_level.value,
            )
        parent = await self.store.get_by_id(parent_level, parent_id)
        if parent is None:
            raise NotFound(parent_level.label, parent_id)
        return parent

    async def find_or_create_region(self, name: Any) -> Region:
        return await self.find_or_create(HierarchyLevel.REGION, name)

    async def find_or_create_district(self, name: Any, region_id: Any) -> District:
        return await self.find_or_create(
            HierarchyLevel.DISTRICT, name, region_id=region_id
        )

    async def find_or_create_sub_district(
        self, name: Any, district_id: Any
    ) -> SubDistrict:
        return await self.find_or_create(
            HierarchyLevel.SUB_DISTRICT, name, district_id=district_id
        )

    async def find_or_create_community(
        self, name: Any, district_id: Any = None, sub_district_id: Any = None
    ) -> Community:
        return await self.find_or_create(
            HierarchyLevel.COMMUNITY,
            name,
            district_id=district_id,
            sub_district_id=sub_district_id,
        )

    # --- read accessors ---
    async def get_region(self, region_id: Any) -> Optional[Region]:
        return await self.store.get_by_id(HierarchyLevel.REGION, region_id)

    async def get_district(self, district_id: Any) -> Optional[District]:
        return await self.store.get_by_id(HierarchyLevel.DISTRICT, district_id)

    async def get_sub_district(self, sub_district_id: Any) -> Optional[SubDistrict]:
        return await self.store.get_by_id(HierarchyLevel.SUB_DISTRICT, sub_district_id)

    async def get_community(self, community_id: Any) -> Optional[Community]:
        return await self.store.get_by_id(HierarchyLevel.COMMUNITY, community_id)

    async def get_location_names(
        self,
        region_id: Any = None,
        district_id: Any = None,
        sub_district_id: Any = None,
        community_id: Any = None,
    ) -> LocationNames:
        """Display names for the given references; missing ones come back as None."""

        async def name_of(level: HierarchyLevel, node_id: Any) -> Optional[str]:
            if node_id is None:
                return None
            node = await self.store.get_by_id(level, node_id)
            return node.name if node else None

        return LocationNames(
            region=await name_of(HierarchyLevel.REGION, region_id),
            district=await name_of(HierarchyLevel.DISTRICT, district_id),
            sub_district=await name_of(HierarchyLevel.SUB_DISTRICT, sub_district_id),
            community=await name_of(HierarchyLevel.COMMUNITY, community_id),
        )

    async def facility_location_names(self, facility: HealthFacility) -> LocationNames:
        return await self.get_location_names(
            region_id=facility.region_id,
            district_id=facility.district_id,
            sub_district_id=facility.sub_district_id,
            community_id=facility.community_id,
        )

    async def get_community_lineage(self, community_id: Any) -> CaseLocation:
        """
        Walks up from a community to its region and returns every id on the way.
        Broken references stop the walk; the levels above stay None.
        """
        location = CaseLocation()
        community = await self.get_community(community_id)
        if community is None:
            return location
        location.community_id = community.id

        district_id = community.district_id
        if community.sub_district_id is not None:
            sub_district = await self.get_sub_district(community.sub_district_id)
            if sub_district is None:
                return location
            location.sub_district_id = sub_district.id
            district_id = sub_district.district_id

        district = await self.get_district(district_id) if district_id else None
        if district is None:
            return location
        location.district_id = district.id

        region = await self.get_region(district.region_id)
        if region is not None:
            location.region_id = region.id
        return location
