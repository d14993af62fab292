# ============================================================================
# Scheduled Reports - Service Wiring
# ============================================================================
# Builds the repositories, the channel registry, the dispatch engine and the
# scheduler from one ReportingConfig.  The result is stored on the FastAPI
# app (app.state.reporting); nothing here is module-global.
# ============================================================================

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import InMemoryMetadataCatalog, default_metadata
from .config import ReportingConfig
from .delivery import ChannelRegistry, EmailChannel, MailTransport, build_transport
from .engine import DispatchEngine
from .interfaces import MetadataCatalog, Renderer
from .models import (
    AuditRepository,
    ReportRepository,
    SegmentRepository,
    SiteRepository,
    UserRepository,
    init_database,
)
from .recipients import RecipientResolver
from .renderer import ReportRenderer
from .scheduler import ReportScheduler

logger = logging.getLogger("reporting.services")


@dataclass
class ReportingServices:
    config: ReportingConfig
    reports: ReportRepository
    sites: SiteRepository
    segments: SegmentRepository
    users: UserRepository
    audit: AuditRepository
    registry: ChannelRegistry
    engine: DispatchEngine
    scheduler: ReportScheduler


def build_services(
    config: ReportingConfig,
    transport: Optional[MailTransport] = None,
    catalog: Optional[MetadataCatalog] = None,
    renderer: Optional[Renderer] = None,
) -> ReportingServices:
    """Create every collaborator; ``transport``, ``catalog`` and ``renderer`` may be replaced."""
    db_path = config.get("db_path")
    init_database(db_path)

    reports = ReportRepository(db_path)
    sites = SiteRepository(db_path)
    segments = SegmentRepository(db_path)
    users = UserRepository(
        db_path,
        super_user_login=config.get("super_user_login"),
        super_user_email=config.get("super_user_email"),
    )
    audit = AuditRepository(db_path)

    registry = ChannelRegistry()
    registry.register(EmailChannel(
        config,
        transport or build_transport(config),
        RecipientResolver(users),
    ))

    engine = DispatchEngine(
        store=reports,
        catalog=catalog or InMemoryMetadataCatalog({None: default_metadata()}),
        renderer=renderer or ReportRenderer(),
        users=users,
        sites=sites,
        segments=segments,
        registry=registry,
        config=config,
        audit=audit,
    )
    scheduler = ReportScheduler(engine, reports, sites, config, audit=audit)

    logger.info(f"Reporting services ready ({config!r}, channels: {', '.join(registry.types())})")
    return ReportingServices(
        config=config,
        reports=reports,
        sites=sites,
        segments=segments,
        users=users,
        audit=audit,
        registry=registry,
        engine=engine,
        scheduler=scheduler,
    )
