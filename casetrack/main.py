# casetrack/main.py
# Wires the services around one injected database handle. CRUD and report
# handlers build a Services bundle at start-up and call into it.
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from casetrack.configs import env, get_setting
from casetrack.services.community_policy import CommunityResolutionPolicy
from casetrack.services.db import database_lifespan, ensure_indexes
from casetrack.services.hierarchy_store import HierarchyStore
from casetrack.services.location_service import LocationService
from casetrack.services.name_resolver import NameResolver
from casetrack.services.repair_service import CommunityRepairService
from casetrack.services.summary_service import CaseSummaryService

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    level = level or env.get("LOG_LEVEL") or get_setting("app", "log_level", "INFO")
    logging.basicConfig(
        level=level.upper(),
        format=get_setting(
            "app",
            "log_format",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        ),
    )


@dataclass
class Services:
    store: HierarchyStore
    resolver: NameResolver
    locations: LocationService
    communities: CommunityResolutionPolicy
    summaries: CaseSummaryService
    repair: CommunityRepairService


def build_services(db, client=None, use_transactions: Optional[bool] = None) -> Services:
    store = HierarchyStore(db)
    resolver = NameResolver(store)
    locations = LocationService(store, resolver)
    return Services(
        store=store,
        resolver=resolver,
        locations=locations,
        communities=CommunityResolutionPolicy(locations),
        summaries=CaseSummaryService(store, resolver),
        repair=CommunityRepairService(
            store, client=client, use_transactions=use_transactions
        ),
    )


@asynccontextmanager
async def lifespan(
    uri: Optional[str] = None, db_name: Optional[str] = None
) -> AsyncIterator[Services]:
    """
    Connects at start-up, ensures lookup indexes and disconnects at shutdown.
    """
    logger.info("Application startup initiated...")
    async with database_lifespan(uri, db_name) as (client, db):
        await ensure_indexes(db)
        yield build_services(db, client=client)
        logger.info("Application shutdown initiated...")
