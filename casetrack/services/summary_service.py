# casetrack/services/summary_service.py
import logging
from typing import Dict, List, Optional, Union

from bson import ObjectId

from casetrack.configs import get_setting
from casetrack.models.case import CaseStatus, PatientStatus
from casetrack.schemas.summary import CaseTypeSummary, SummaryFilters
from casetrack.services.db import store_errors
from casetrack.services.hierarchy_store import HierarchyStore, is_object_id, to_object_id
from casetrack.services.name_resolver import NameResolver

logger = logging.getLogger(__name__)

OUTCOME_FIELDS = {
    PatientStatus.RECOVERED.value: "recovered",
    PatientStatus.ONGOING_TREATMENT.value: "ongoing_treatment",
    PatientStatus.DECEASED.value: "deceased",
}


def roll_up(groups: List[dict], case_type_names: Dict[ObjectId, str]) -> List[CaseTypeSummary]:
    """
    Folds (caseType, status, patientStatus) counts into one summary per case type,
    sorted by case-type name. An unrecognised patient status counts towards the
    status total only.
    """
    summaries: Dict[Optional[ObjectId], CaseTypeSummary] = {}
    for group in groups:
        key = group.get("_id") or {}
        case_type_id = key.get("caseType")
        status = key.get("status")
        count = int(group.get("count", 0))
        if status not in (CaseStatus.CONFIRMED.value, CaseStatus.SUSPECTED.value):
            continue

        summary = summaries.get(case_type_id)
        if summary is None:
            summary = CaseTypeSummary(
                case_type_id=case_type_id, name=case_type_names.get(case_type_id)
            )
            summaries[case_type_id] = summary

        if status == CaseStatus.CONFIRMED.value:
            breakdown = summary.confirmed
        else:
            breakdown = summary.suspected

        breakdown.total += count
        summary.total += count
        outcome = OUTCOME_FIELDS.get(key.get("patientStatus"))
        if outcome:
            setattr(breakdown, outcome, getattr(breakdown, outcome) + count)

    return sorted(summaries.values(), key=lambda s: (s.name is None, s.name or ""))


class CaseSummaryService:
    """
    Case-type summaries filtered by any mix of hierarchy levels, case type and
    facility. Filters are ids or names; a filter that does not resolve yields an
    empty list, so callers cannot tell a missing area from an area with no cases.
    """

    def __init__(self, store: HierarchyStore, resolver: Optional[NameResolver] = None):
        self.store = store
        self.resolver = resolver or NameResolver(store)
        self.active_statuses = list(
            get_setting(
                "summary",
                "active_statuses",
                [CaseStatus.SUSPECTED.value, CaseStatus.CONFIRMED.value],
            )
        )

    async def summarize(
        self, filters: Union[SummaryFilters, dict, None] = None
    ) -> List[CaseTypeSummary]:
        if filters is None:
            filters = SummaryFilters()
        elif isinstance(filters, dict):
            filters = SummaryFilters.model_validate(filters)

        match = await self.build_match(filters)
        if match is None:
            return []

        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": {
                        "caseType": "$caseType",
                        "status": "$status",
                        "patientStatus": "$patient.status",
                    },
                    "count": {"$sum": 1},
                }
            },
        ]
        with store_errors("Case summary aggregation"):
            cursor = await self.store.cases.aggregate(pipeline)
            groups = await cursor.to_list(length=None)

        case_type_ids = list({g["_id"].get("caseType") for g in groups} - {None})
        names = await self.store.case_type_names(case_type_ids) if case_type_ids else {}
        return roll_up(groups, names)

    async def build_match(self, filters: SummaryFilters) -> Optional[dict]:
        """
        Resolves every filter to ids and returns the $match stage, or None when a
        filter does not resolve or no facility lies in the requested area.
        """
        match: dict = {
            "archived": {"$ne": True},
            "status": {"$in": self.active_statuses},
        }

        if filters.case_type:
            case_type = await self.store.get_case_type(filters.case_type)
            if case_type is None:
                logger.debug(f"Case type '{filters.case_type}' did not resolve")
                return None
            match["caseType"] = case_type.id

        scope = await self.resolver.resolve_chain(
            region=filters.region,
            district=filters.district,
            sub_district=filters.sub_district,
            community=filters.community,
        )
        if scope is None:
            return None

        facility_ids = None
        if filters.has_geography():
            facility_query = {}
            if scope.region_id is not None:
                facility_query["region"] = scope.region_id
            if scope.district_id is not None:
                facility_query["district"] = scope.district_id
            if scope.sub_district_id is not None:
                facility_query["subDistrict"] = scope.sub_district_id
            facility_ids = await self.store.find_facility_ids(facility_query)
            if not facility_ids:
                return None

        if filters.facility:
            facility_id = await self._resolve_facility(filters.facility)
            if facility_id is None:
                return None
            if facility_ids is not None and facility_id not in facility_ids:
                return None
            facility_ids = [facility_id]

        if facility_ids is not None:
            match["healthFacility"] = {"$in": facility_ids}

        if scope.community_id is not None:
            match["community"] = scope.community_id

        return match

    async def _resolve_facility(self, value: str) -> Optional[ObjectId]:
        if is_object_id(value):
            facility = await self.store.get_facility(to_object_id(value))
        else:
            facility = await self.store.find_facility_by_name(value)
        if facility is None:
            logger.debug(f"Health facility '{value}' did not resolve")
            return None
        return facility.id
