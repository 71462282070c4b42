# casetrack/services/name_resolver.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId

from casetrack.exceptions import InvalidInput
from casetrack.models.hierarchy import HierarchyLevel, HierarchyNode
from casetrack.services.hierarchy_store import (
    HierarchyStore,
    is_object_id,
    normalize_name,
)

logger = logging.getLogger(__name__)


@dataclass
class ResolvedScope:
    """Identifiers for the hierarchy values a caller supplied; unsupplied levels stay None."""

    region_id: Optional[ObjectId] = None
    district_id: Optional[ObjectId] = None
    sub_district_id: Optional[ObjectId] = None
    community_id: Optional[ObjectId] = None


class NameResolver:
    """
    Finds an existing node from an identifier or a free-text name. Matching is
    exact after trimming, ignoring case. A miss is reported as None, never raised:
    the read path turns it into an empty result and the write path into a create.
    """

    def __init__(self, store: HierarchyStore):
        self.store = store

    async def scopes_for(
        self,
        level: HierarchyLevel,
        region_id: Any = None,
        district_id: Any = None,
        sub_district_id: Any = None,
    ) -> List[Dict[str, Any]]:
        """
        Stored parent filters to try in order for a name lookup. A single empty
        filter means a global match; an empty list means nothing can match.

        A community may hang off a district directly or off one of its
        sub-districts, so a district (or region) scope covers both: direct
        children first, then those under the sub-districts.
        """
        if level == HierarchyLevel.DISTRICT and region_id is not None:
            return [{"region": region_id}]
        if level == HierarchyLevel.SUB_DISTRICT and district_id is not None:
            return [{"district": district_id}]
        if level == HierarchyLevel.SUB_DISTRICT and region_id is not None:
            district_ids = await self.store.child_ids(
                HierarchyLevel.DISTRICT, {"region": region_id}
            )
            return [{"district": district_ids}] if district_ids else []
        if level != HierarchyLevel.COMMUNITY:
            return [{}]

        if sub_district_id is not None:
            return [{"subDistrict": sub_district_id}]
        if district_id is not None:
            district_ids = [district_id]
        elif region_id is not None:
            district_ids = await self.store.child_ids(
                HierarchyLevel.DISTRICT, {"region": region_id}
            )
        else:
            return [{}]

        scopes = []
        if district_ids:
            scopes.append({"district": district_ids})
            sub_district_ids = await self.store.child_ids(
                HierarchyLevel.SUB_DISTRICT, {"district": district_ids}
            )
            if sub_district_ids:
                scopes.append({"subDistrict": sub_district_ids})
        return scopes

    async def resolve(
        self,
        level: HierarchyLevel,
        value: Any,
        *,
        region_id: Any = None,
        district_id: Any = None,
        sub_district_id: Any = None,
    ) -> Optional[HierarchyNode]:
        """
        Resolves `value` at `level`. An identifier is looked up directly and the
        parent scope is ignored. A name is matched within the scope (see
        scopes_for); without one, districts, sub-districts and communities fall
        back to a global match that returns an arbitrary node when the name
        repeats under different parents.
        """
        if is_object_id(value):
            return await self.store.get_by_id(level, value)

        name = normalize_name(value)
        if not name:
            raise InvalidInput(f"{level.label} name is required.", field=level.value)

        scopes = await self.scopes_for(level, region_id, district_id, sub_district_id)
        for scope in scopes:
            node = await self.store.find_by_name(level, name, scope)
            if node is not None:
                return node
        return None

    async def resolve_chain(
        self,
        region: Any = None,
        district: Any = None,
        sub_district: Any = None,
        community: Any = None,
    ) -> Optional[ResolvedScope]:
        """
        Resolves each supplied level, scoping every name by the level above it
        (a community anywhere below the most specific level given). Returns None
        as soon as a supplied value does not resolve.
        """
        resolved = ResolvedScope()
        steps = [
            (HierarchyLevel.REGION, region, "region_id"),
            (HierarchyLevel.DISTRICT, district, "district_id"),
            (HierarchyLevel.SUB_DISTRICT, sub_district, "sub_district_id"),
            (HierarchyLevel.COMMUNITY, community, "community_id"),
        ]
        for level, value, attr in steps:
            if not normalize_name(value):
                continue
            node = await self.resolve(
                level,
                value,
                region_id=resolved.region_id,
                district_id=resolved.district_id,
                sub_district_id=resolved.sub_district_id,
            )
            if node is None:
                logger.debug(f"{level.label} '{value}' did not resolve")
                return None
            setattr(resolved, attr, node.id)
        return resolved

    async def exists(
        self,
        level: HierarchyLevel,
        name: Any,
        *,
        region: Any = None,
        district: Any = None,
        sub_district: Any = None,
    ) -> bool:
        """
        True when a node named `name` already exists at `level` under the given
        parents (ids or names). Used to warn data-entry staff about duplicates.
        """
        if not normalize_name(name):
            raise InvalidInput("Name required.", field="name")
        if (
            level == HierarchyLevel.COMMUNITY
            and not normalize_name(district)
            and not normalize_name(sub_district)
        ):
            raise InvalidInput(
                "district or subDistrict required.", field="district"
            )

        # only levels above `level` take part in the scope
        above = {
            HierarchyLevel.REGION: {},
            HierarchyLevel.DISTRICT: {"region": region},
            HierarchyLevel.SUB_DISTRICT: {"region": region, "district": district},
            HierarchyLevel.COMMUNITY: {
                "region": region,
                "district": district,
                "sub_district": sub_district,
            },
        }[level]
        parents = await self.resolve_chain(**above)
        if parents is None:
            # nothing can exist under a parent that does not exist
            return False

        node = await self.resolve(
            level,
            name,
            region_id=parents.region_id,
            district_id=parents.district_id,
            sub_district_id=parents.sub_district_id,
        )
        return node is not None
