# casetrack/services/repair_service.py
"""
Offline repair of the communities collection.

Phase A fixes communities whose `subDistrict` field holds a District id (a
historical write bug): the value is moved to `district`, or the community is
merged into a same-named community already under that district.

Phase B merges every remaining group of communities that share
(name, district, subDistrict), keeping the first by name.

A merge repoints facilities and cases to the surviving community before the
duplicate is deleted, inside a transaction when the server supports them.
Both phases are idempotent: a second run over repaired data changes nothing.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from casetrack.configs import get_setting
from casetrack.exceptions import CaseTrackError, Conflict
from casetrack.models.hierarchy import HierarchyLevel
from casetrack.schemas.repair import RepairAction, RepairActionType, RepairReport
from casetrack.services.db import store_errors
from casetrack.services.hierarchy_store import HierarchyStore, normalize_name

logger = logging.getLogger(__name__)

PHASE_MISPLACED = "misplaced-parent"
PHASE_DEDUP = "dedup"

UNIQUE_INDEX_KEYS = [("name", ASCENDING), ("district", ASCENDING), ("subDistrict", ASCENDING)]


def _dedup_key(doc: dict) -> Tuple[str, Optional[ObjectId], Optional[ObjectId]]:
    return (
        normalize_name(doc.get("name")).casefold(),
        doc.get("district"),
        doc.get("subDistrict"),
    )


class CommunityRepairService:
    def __init__(
        self,
        store: HierarchyStore,
        client=None,
        use_transactions: Optional[bool] = None,
        index_name: Optional[str] = None,
    ):
        self.store = store
        self.client = client
        if use_transactions is None:
            use_transactions = get_setting("repair", "use_transactions", True)
        # transactions need the client that owns the session
        self.use_transactions = bool(use_transactions) and client is not None
        self.index_name = index_name or get_setting(
            "repair", "unique_index_name", "name_1_district_1_subDistrict_1"
        )

    async def run(
        self,
        dry_run: bool = True,
        ensure_index: Optional[bool] = None,
        strict_index: bool = False,
    ) -> RepairReport:
        """
        Runs both phases. With dry_run nothing is written and the report lists
        what an apply run would do.
        """
        if ensure_index is None:
            ensure_index = get_setting("repair", "ensure_unique_index", True)

        report = RepairReport(dry_run=dry_run)
        logger.info(f"Community repair started. dry-run: {dry_run}")

        overrides = await self.repair_misplaced_parents(report, dry_run)
        await self.deduplicate(report, dry_run, overrides)

        if ensure_index and not dry_run:
            await self.ensure_unique_index(report, strict=strict_index)

        counts = report.counts()
        logger.info(
            "Community repair done. "
            + " ".join(f"{key}={value}" for key, value in counts.items())
        )
        return report

    # --- Phase A ---
    async def repair_misplaced_parents(
        self, report: RepairReport, dry_run: bool
    ) -> Dict[ObjectId, Optional[dict]]:
        """
        Returns the planned change per community id: the new parent fields for a
        migration, None for a merged (deleted) community. Phase B replays these
        in dry-run mode.
        """
        with store_errors("Scanning communities"):
            suspects = await self.store.communities.find(
                {
                    "$or": [{"district": None}, {"district": {"$exists": False}}],
                    "subDistrict": {"$ne": None},
                },
                sort=[("_id", ASCENDING)],
            ).to_list(length=None)

        overrides: Dict[ObjectId, Optional[dict]] = {}
        # (name key, district id) -> community id migrated there during this run
        moved_into: Dict[Tuple[str, ObjectId], ObjectId] = {}

        for doc in suspects:
            try:
                await self._repair_misplaced(doc, report, dry_run, overrides, moved_into)
            except (CaseTrackError, PyMongoError) as e:
                logger.error(f"Failed to repair community {doc['_id']} ('{doc.get('name')}'): {e}")
                report.record(
                    RepairAction(
                        action=RepairActionType.FAILED,
                        phase=PHASE_MISPLACED,
                        community_id=str(doc["_id"]),
                        name=str(doc.get("name")),
                        detail=str(e),
                    )
                )
        return overrides

    async def _repair_misplaced(
        self,
        doc: dict,
        report: RepairReport,
        dry_run: bool,
        overrides: Dict[ObjectId, Optional[dict]],
        moved_into: Dict[Tuple[str, ObjectId], ObjectId],
    ) -> None:
        community_id = doc["_id"]
        name = str(doc.get("name"))
        stored_id = doc["subDistrict"]

        if await self.store.get_by_id(HierarchyLevel.SUB_DISTRICT, stored_id):
            return

        district = await self.store.get_by_id(HierarchyLevel.DISTRICT, stored_id)
        if district is None:
            logger.warning(
                f"Skipping community {community_id} ('{name}'): subDistrict {stored_id} "
                "resolves to neither a SubDistrict nor a District"
            )
            report.record(
                RepairAction(
                    action=RepairActionType.SKIPPED,
                    phase=PHASE_MISPLACED,
                    community_id=str(community_id),
                    name=name,
                    detail=f"unresolvable subDistrict reference {stored_id}",
                )
            )
            return

        outcome: Dict[str, Optional[ObjectId]] = {}

        async def fix(session) -> None:
            # lookup, repoint and delete form one unit of work
            keeper_id = await self._find_keeper(name, district.id, moved_into, session)
            outcome["keeper_id"] = keeper_id
            if dry_run:
                return
            if keeper_id is not None:
                await self._merge(community_id, keeper_id, session)
            else:
                await self._move_to_district(community_id, district.id, session)

        if dry_run:
            await fix(None)
        else:
            await self._atomically(fix)
        keeper_id = outcome["keeper_id"]

        if keeper_id is not None:
            prefix = "[DRY RUN] Would merge" if dry_run else "Merged"
            logger.info(
                f"{prefix} misstored community {community_id} ('{name}') into "
                f"{keeper_id} under district {district.id}"
            )
            overrides[community_id] = None
            report.record(
                RepairAction(
                    action=RepairActionType.MERGED,
                    phase=PHASE_MISPLACED,
                    community_id=str(community_id),
                    name=name,
                    detail=f"subDistrict held District id {district.id}; merged into existing community",
                    target_id=str(keeper_id),
                )
            )
            return

        prefix = "[DRY RUN] Would move" if dry_run else "Moved"
        logger.info(
            f"{prefix} community {community_id} ('{name}'): subDistrict {stored_id} "
            f"is District '{district.name}', setting district={district.id}, subDistrict=null"
        )
        overrides[community_id] = {"district": district.id, "subDistrict": None}
        moved_into[(normalize_name(name).casefold(), district.id)] = community_id
        report.record(
            RepairAction(
                action=RepairActionType.MIGRATED,
                phase=PHASE_MISPLACED,
                community_id=str(community_id),
                name=name,
                detail=f"moved District id {district.id} from subDistrict to district",
                target_id=str(district.id),
            )
        )

    async def _find_keeper(
        self,
        name: str,
        district_id: ObjectId,
        moved_into: Dict[Tuple[str, ObjectId], ObjectId],
        session,
    ) -> Optional[ObjectId]:
        """Same-named community already under the district, stored or planned."""
        existing = await self.store.find_by_name(
            HierarchyLevel.COMMUNITY, name, {"district": district_id}, session=session
        )
        if existing is not None:
            return existing.id
        return moved_into.get((normalize_name(name).casefold(), district_id))

    # --- Phase B ---
    async def deduplicate(
        self,
        report: RepairReport,
        dry_run: bool,
        overrides: Optional[Dict[ObjectId, Optional[dict]]] = None,
    ) -> None:
        with store_errors("Scanning communities"):
            docs = await self.store.communities.find(
                {}, sort=[("name", ASCENDING), ("_id", ASCENDING)]
            ).to_list(length=None)

        if dry_run and overrides:
            docs = self._apply_overrides(docs, overrides)

        keepers: Dict[tuple, ObjectId] = {}
        for doc in docs:
            key = _dedup_key(doc)
            if key not in keepers:
                keepers[key] = doc["_id"]
                continue

            keeper_id = keepers[key]
            duplicate_id = doc["_id"]
            name = str(doc.get("name"))
            prefix = "[DRY RUN] Would merge" if dry_run else "Merging"
            logger.info(
                f"{prefix} duplicate community {duplicate_id} ('{name}') into {keeper_id} "
                f"(district={key[1]}, subDistrict={key[2]})"
            )
            try:
                if not dry_run:
                    await self._atomically(
                        lambda session: self._merge(duplicate_id, keeper_id, session)
                    )
            except (CaseTrackError, PyMongoError) as e:
                logger.error(f"Failed to merge community {duplicate_id} into {keeper_id}: {e}")
                report.record(
                    RepairAction(
                        action=RepairActionType.FAILED,
                        phase=PHASE_DEDUP,
                        community_id=str(duplicate_id),
                        name=name,
                        detail=str(e),
                        target_id=str(keeper_id),
                    )
                )
                continue
            report.record(
                RepairAction(
                    action=RepairActionType.MERGED,
                    phase=PHASE_DEDUP,
                    community_id=str(duplicate_id),
                    name=name,
                    detail=f"duplicate of {keeper_id} under the same parent",
                    target_id=str(keeper_id),
                )
            )

    @staticmethod
    def _apply_overrides(
        docs: List[dict], overrides: Dict[ObjectId, Optional[dict]]
    ) -> List[dict]:
        result = []
        for doc in docs:
            if doc["_id"] not in overrides:
                result.append(doc)
                continue
            change = overrides[doc["_id"]]
            if change is not None:
                result.append({**doc, **change})
        return result

    # --- unique index ---
    async def ensure_unique_index(self, report: RepairReport, strict: bool = False) -> None:
        """
        Builds the unique (name, district, subDistrict) index. A failure means
        duplicates survived the pass; it is logged loudly and recorded, and raised
        as Conflict when strict.
        """
        logger.info(f"Ensuring unique index {self.index_name} on communities ...")
        try:
            await self.store.communities.create_index(
                UNIQUE_INDEX_KEYS, unique=True, sparse=True, name=self.index_name
            )
        except PyMongoError as e:
            report.index_ensured = False
            report.index_error = str(e)
            logger.warning(
                f"UNIQUE INDEX {self.index_name} COULD NOT BE BUILT - latent duplicate "
                f"communities remain and need manual inspection: {e}"
            )
            if strict:
                raise Conflict(f"Duplicate communities remain: {e}") from e
            return
        report.index_ensured = True
        logger.info("Index created/ensured.")

    # --- mutations ---
    async def _atomically(self, operation: Callable[[Any], Awaitable[None]]) -> None:
        """
        Runs operation(session) in a transaction when enabled. Without one, the
        operation's own ordering (repoint before delete) keeps references valid.
        """
        if not self.use_transactions:
            with store_errors("Repair step"):
                await operation(None)
            return
        with store_errors("Repair transaction"):
            async with self.client.start_session() as session:
                await session.with_transaction(operation)

    async def _move_to_district(self, community_id: ObjectId, district_id: ObjectId, session) -> None:
        await self.store.communities.update_one(
            {"_id": community_id},
            {
                "$set": {
                    "district": district_id,
                    "subDistrict": None,
                    "updatedAt": datetime.now(timezone.utc),
                }
            },
            **self._session_kwargs(session),
        )

    async def _merge(self, duplicate_id: ObjectId, keeper_id: ObjectId, session) -> None:
        kwargs = self._session_kwargs(session)
        await self.store.facilities.update_many(
            {"community": duplicate_id}, {"$set": {"community": keeper_id}}, **kwargs
        )
        await self.store.cases.update_many(
            {"community": duplicate_id}, {"$set": {"community": keeper_id}}, **kwargs
        )
        await self.store.cases.update_many(
            {"location.community": duplicate_id},
            {"$set": {"location.community": keeper_id}},
            **kwargs,
        )
        await self.store.communities.delete_one({"_id": duplicate_id}, **kwargs)

    @staticmethod
    def _session_kwargs(session) -> dict:
        return {"session": session} if session is not None else {}
