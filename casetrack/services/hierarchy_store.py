# casetrack/services/hierarchy_store.py
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from casetrack.models.case import CaseType, HealthFacility
from casetrack.models.hierarchy import NODE_MODELS, HierarchyLevel, HierarchyNode
from casetrack.services.db import collection_names, store_errors

logger = logging.getLogger(__name__)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

# level -> (collection key, stored parent fields)
LEVEL_LAYOUT: Dict[HierarchyLevel, Tuple[str, Tuple[str, ...]]] = {
    HierarchyLevel.REGION: ("regions", ()),
    HierarchyLevel.DISTRICT: ("districts", ("region",)),
    HierarchyLevel.SUB_DISTRICT: ("subdistricts", ("district",)),
    HierarchyLevel.COMMUNITY: ("communities", ("district", "subDistrict")),
}


def normalize_name(value: Any) -> str:
    """Trimmed name, or '' for None/blank."""
    if value is None:
        return ""
    return str(value).strip()


def is_object_id(value: Any) -> bool:
    """
    True for ObjectId instances and 24-char hex strings. bson's own is_valid
    also accepts any 12-character string, which would swallow names like
    'Kumasi Metro'.
    """
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value.strip()))


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    return ObjectId(str(value).strip())


def name_query(name: str) -> dict:
    """Case-insensitive exact match, tolerant of stored surrounding whitespace."""
    return {"$regex": rf"^\s*{re.escape(normalize_name(name))}\s*$", "$options": "i"}


def parent_query(parents: Optional[Dict[str, Any]]) -> dict:
    query = {}
    for field, value in (parents or {}).items():
        if value is None:
            query[field] = None
        elif isinstance(value, (list, tuple, set)):
            query[field] = {"$in": [to_object_id(v) for v in value]}
        else:
            query[field] = to_object_id(value)
    return query


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HierarchyStore:
    """
    Persistent home of the four hierarchy levels. Owns inserts and lookups;
    merge/delete operations are issued only by the repair pass through the raw
    collections exposed here.
    """

    def __init__(self, db, collections: Optional[Dict[str, str]] = None):
        self.db = db
        self.names = collections or collection_names()

    # --- collections ---
    def collection(self, level: HierarchyLevel):
        key, _ = LEVEL_LAYOUT[level]
        return self.db[self.names[key]]

    @property
    def communities(self):
        return self.collection(HierarchyLevel.COMMUNITY)

    @property
    def facilities(self):
        return self.db[self.names["facilities"]]

    @property
    def cases(self):
        return self.db[self.names["cases"]]

    @property
    def case_types(self):
        return self.db[self.names["case_types"]]

    # --- hierarchy nodes ---
    @staticmethod
    def parent_fields(level: HierarchyLevel) -> Tuple[str, ...]:
        return LEVEL_LAYOUT[level][1]

    async def get_by_id(self, level: HierarchyLevel, node_id: Any) -> Optional[HierarchyNode]:
        """Fetches a node by id; a malformed id simply does not exist."""
        if not is_object_id(node_id):
            return None
        with store_errors(f"Loading {level.label}"):
            doc = await self.collection(level).find_one({"_id": to_object_id(node_id)})
        return NODE_MODELS[level].model_validate(doc) if doc else None

    async def find_by_name(
        self,
        level: HierarchyLevel,
        name: str,
        parents: Optional[Dict[str, Any]] = None,
        session=None,
    ) -> Optional[HierarchyNode]:
        """
        Oldest node at `level` whose name matches case-insensitively. `parents`
        maps stored parent fields to an id, a list of ids, or None (matches a
        null/absent field); an empty mapping is a global match.
        """
        query = {"name": name_query(name), **parent_query(parents)}
        kwargs = {"session": session} if session is not None else {}
        with store_errors(f"Looking up {level.label}"):
            docs = await self.collection(level).find(
                query, sort=[("_id", 1)], limit=1, **kwargs
            ).to_list(length=1)
        return NODE_MODELS[level].model_validate(docs[0]) if docs else None

    async def child_ids(
        self, level: HierarchyLevel, parents: Dict[str, Any]
    ) -> List[ObjectId]:
        """Ids of every node at `level` under the given parents."""
        with store_errors(f"Listing {level.label}"):
            docs = await self.collection(level).find(
                parent_query(parents), projection={"_id": 1}
            ).to_list(length=None)
        return [doc["_id"] for doc in docs]

    async def insert(
        self, level: HierarchyLevel, name: str, parents: Dict[str, Any]
    ) -> HierarchyNode:
        """
        Inserts a node with the trimmed name and exactly the given parent fields.
        When a unique index rejects the insert another writer won the race, so the
        winner is returned instead.
        """
        now = _utcnow()
        doc = {"name": normalize_name(name), "createdAt": now, "updatedAt": now}
        for field in self.parent_fields(level):
            value = parents.get(field)
            doc[field] = to_object_id(value) if value is not None else None
        try:
            with store_errors(f"Creating {level.label}"):
                result = await self.collection(level).insert_one(doc)
        except DuplicateKeyError:
            existing = await self.find_by_name(
                level, name, {f: doc[f] for f in self.parent_fields(level)}
            )
            if existing is None:
                raise
            logger.info(
                f"{level.label} '{name}' was created concurrently; using {existing.id}"
            )
            return existing
        doc["_id"] = result.inserted_id
        node = NODE_MODELS[level].model_validate(doc)
        parent_repr = ", ".join(
            f"{field}={doc[field]}" for field in self.parent_fields(level)
        )
        logger.info(f"Created {level.label} {node.id} '{node.name}' ({parent_repr})")
        return node

    # --- dependents ---
    async def get_facility(self, facility_id: Any) -> Optional[HealthFacility]:
        if not is_object_id(facility_id):
            return None
        with store_errors("Loading health facility"):
            doc = await self.facilities.find_one({"_id": to_object_id(facility_id)})
        return HealthFacility.model_validate(doc) if doc else None

    async def find_facility_by_name(self, name: str) -> Optional[HealthFacility]:
        with store_errors("Looking up health facility"):
            docs = await self.facilities.find(
                {"name": name_query(name)}, sort=[("_id", 1)], limit=1
            ).to_list(length=1)
        return HealthFacility.model_validate(docs[0]) if docs else None

    async def find_facility_ids(self, query: dict) -> List[ObjectId]:
        with store_errors("Listing health facilities"):
            docs = await self.facilities.find(query, projection={"_id": 1}).to_list(
                length=None
            )
        return [doc["_id"] for doc in docs]

    async def get_case_type(self, value: Any) -> Optional[CaseType]:
        """Case type by id, or by case-insensitive exact name."""
        query = (
            {"_id": to_object_id(value)}
            if is_object_id(value)
            else {"name": name_query(value)}
        )
        with store_errors("Looking up case type"):
            doc = await self.case_types.find_one(query)
        return CaseType.model_validate(doc) if doc else None

    async def case_type_names(self, ids: List[ObjectId]) -> Dict[ObjectId, str]:
        with store_errors("Loading case types"):
            docs = await self.case_types.find({"_id": {"$in": ids}}).to_list(length=None)
        return {doc["_id"]: doc.get("name") for doc in docs}
