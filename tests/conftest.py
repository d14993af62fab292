"""
Scheduled Reports — Test Infrastructure (conftest.py)
=====================================================
Provides:
  - Temporary sqlite database per test with deterministic seed data
  - ReportingConfig without environment lookups
  - Fake collaborators: recording / failing mail transports, fake renderer
  - DispatchEngine and FastAPI TestClient wired to the fakes
"""

import os
import sys
import tempfile
from datetime import datetime, timezone

import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

# main.py builds an app at import time; keep it away from the working tree
os.environ.setdefault("REPORTS_DB_PATH", os.path.join(tempfile.mkdtemp(), "reports_import.db"))
os.environ.setdefault("REPORTS_SCHEDULER_ENABLED", "false")

from scheduled_reports.catalog import InMemoryMetadataCatalog, default_metadata
from scheduled_reports.config import ReportingConfig
from scheduled_reports.delivery import ChannelRegistry, DeliveryResult, EmailChannel, MailTransport
from scheduled_reports.engine import DispatchEngine
from scheduled_reports.interfaces import Renderer
from scheduled_reports.models import (
    AuditRepository,
    ReportDefinition,
    ReportRepository,
    Segment,
    SegmentRepository,
    Site,
    SiteRepository,
    User,
    UserRepository,
    init_database,
)
from scheduled_reports.recipients import RecipientResolver
from scheduled_reports.renderer import InlineAttachment, RenderedReport


# Wednesday; the previous week is Monday 1 to Sunday 7 January 2024
FIXED_NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


# ============================================================================
# Fake collaborators
# ============================================================================

class RecordingTransport(MailTransport):
    """Records every message instead of sending it."""

    name = "recording"

    def __init__(self):
        self.sent = []

    def is_configured(self) -> bool:
        return True

    def send(self, message) -> DeliveryResult:
        self.sent.append({
            "recipients": list(message.recipients),
            "subject": message.subject,
            "from_email": message.from_email,
            "from_name": message.from_name,
            "body_text": message.body_text,
            "body_html": message.body_html,
            "multipart_subtype": message.multipart_subtype,
            "attachments": list(message.attachments),
        })
        return DeliveryResult(success=True, recipient=", ".join(message.recipients), channel="email")

    @property
    def recipients(self):
        return [r for sent in self.sent for r in sent["recipients"]]


class FailingTransport(RecordingTransport):
    """Fails for the addresses in ``fail_for``; records the rest."""

    name = "failing"

    def __init__(self, fail_for):
        super().__init__()
        self.fail_for = set(fail_for)
        self.attempts = []

    def send(self, message) -> DeliveryResult:
        self.attempts.append(list(message.recipients))
        if set(message.recipients) & self.fail_for:
            return DeliveryResult(success=False, recipient=", ".join(message.recipients),
                                  channel="email", error="550 mailbox unavailable")
        return super().send(message)


class FakeRenderer(Renderer):
    """Renders a tiny document and remembers what it was asked to render."""

    def __init__(self):
        self.calls = []

    def render(self, report_format, processed_reports, header, render_images_inline=False):
        self.calls.append({
            "format": report_format,
            "processed": processed_reports,
            "header": header,
            "inline": render_images_inline,
        })
        attachments = []
        if not render_images_inline:
            for processed in processed_reports:
                if processed.display_graph:
                    attachments.append(InlineAttachment(
                        content=b"\x89PNG fake",
                        mime_type="image/png",
                        filename=f"{processed.metadata.id}.png",
                        content_id=f"{processed.metadata.id}_graph",
                    ))
        if report_format == "pdf":
            return RenderedReport(content=b"%PDF-1.7 fake", content_type="application/pdf")
        body = "".join(f"<h2>{p.metadata.name}</h2>" for p in processed_reports)
        return RenderedReport(content=body.encode("utf-8"), content_type="text/html",
                              attachments=attachments)

    @property
    def last(self):
        return self.calls[-1]


# ============================================================================
# Database & configuration
# ============================================================================

@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "reports_test.db"
    init_database(path)
    return path


@pytest.fixture
def config(db_path):
    return ReportingConfig(
        overrides={
            "db_path": str(db_path),
            "scheduler_enabled": False,
            "from_email": "noreply@reports.example.com",
            "from_name": "Analytics Reports",
            "super_user_login": "admin",
            "super_user_email": "admin@example.com",
            "suppress_delivery_errors": False,
        },
        environ={},
    )


@pytest.fixture
def reports(db_path):
    return ReportRepository(db_path)


@pytest.fixture
def sites(db_path):
    return SiteRepository(db_path)


@pytest.fixture
def segments(db_path):
    return SegmentRepository(db_path)


@pytest.fixture
def users(db_path, config):
    return UserRepository(db_path, config.get("super_user_login"), config.get("super_user_email"))


@pytest.fixture
def audit(db_path):
    return AuditRepository(db_path)


@pytest.fixture
def seeded(sites, segments, users):
    """Two sites, one segment, two users."""
    shop = sites.create(Site(name="Example Shop", timezone="Etc/GMT-2"))
    blog = sites.create(Site(name="Example Blog", timezone="America/New_York"))
    mobile = segments.create(Segment(name="Mobile visitors", definition="deviceType==smartphone"))
    users.upsert(User(login="alice", email="alice@example.com", alias="Alice"))
    users.upsert(User(login="bob", email="bob@example.com", alias="Bob"))
    return {"shop": shop, "blog": blog, "mobile": mobile}


@pytest.fixture
def make_report(reports, seeded):
    """Factory inserting a report definition; returns its id."""

    def _make(**fields):
        values = dict(
            site_id=seeded["shop"],
            owner_login="alice",
            description="Weekly overview",
            period="week",
            hour=8,
            channel_type="email",
            format="html",
            sub_report_ids=["VisitsSummary_get", "UserCountry_getCountry"],
            parameters={"displayFormat": 1, "emailMe": True, "evolutionGraph": False,
                        "additionalEmails": ["team@example.com"]},
        )
        values.update(fields)
        return reports.create(ReportDefinition(**values))

    return _make


@pytest.fixture
def alice():
    return User(login="alice", email="alice@example.com")


# ============================================================================
# Engine
# ============================================================================

@pytest.fixture
def catalog(seeded):
    data = {
        (seeded["shop"], "VisitsSummary_get"): [
            {"nb_visits": 120, "nb_uniq_visitors": 80, "bounce_rate": "41%"},
        ],
        (seeded["shop"], "UserCountry_getCountry"): [
            {"label": "France", "nb_visits": 70},
            {"label": "Germany", "nb_visits": 50},
        ],
        (seeded["shop"], "MultiSites_getAll"): [
            {"label": "Example Shop", "nb_visits": 120, "visits_evolution": "12%"},
        ],
    }
    return InMemoryMetadataCatalog({None: default_metadata()}, data)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def make_engine(config, reports, sites, segments, users, audit, catalog, renderer):
    """Factory building a DispatchEngine around a given transport."""

    def _make(transport, graphing=True, engine_config=None):
        engine_config = engine_config or config
        registry = ChannelRegistry()
        registry.register(EmailChannel(engine_config, transport, RecipientResolver(users)))
        return DispatchEngine(
            store=reports,
            catalog=catalog,
            renderer=renderer,
            users=users,
            sites=sites,
            segments=segments,
            registry=registry,
            config=engine_config,
            audit=audit,
            graphing=graphing,
        )

    return _make


@pytest.fixture
def engine(make_engine, transport):
    return make_engine(transport)


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
def services(config, transport, renderer, catalog, seeded):
    from scheduled_reports.services import build_services
    return build_services(config, transport=transport, catalog=catalog, renderer=renderer)


@pytest.fixture
def client(config, services):
    """FastAPI TestClient around a freshly built app."""
    from fastapi.testclient import TestClient
    from main import create_app

    app = create_app(config, services=services)
    return TestClient(app)


@pytest.fixture
def report_payload(seeded):
    return {
        "site_id": seeded["shop"],
        "description": "Weekly overview",
        "period": "week",
        "hour": 8,
        "channel_type": "email",
        "format": "html",
        "sub_report_ids": ["VisitsSummary_get", "UserCountry_getCountry"],
        "parameters": {"displayFormat": 1, "emailMe": True, "additionalEmails": ["team@example.com"]},
    }
