"""
Scheduled Reports — Recipient Resolver Tests
============================================
Tests: owner address sources, additional emails, dedup, preview
"""

import pytest

from scheduled_reports.errors import RecipientResolutionAborted
from scheduled_reports.models import ReportDefinition, User
from scheduled_reports.recipients import RecipientResolver


def _report(owner="alice", email_me=True, additional=None):
    parameters = {"emailMe": email_me}
    if additional is not None:
        parameters["additionalEmails"] = additional
    return ReportDefinition(id=1, site_id=1, owner_login=owner, parameters=parameters)


@pytest.fixture
def resolver(users, seeded):
    return RecipientResolver(users)


class TestResolve:

    def test_additional_emails_then_owner(self, resolver, alice):
        report = _report(additional=["team@example.com", "boss@example.com"])
        assert resolver.resolve(report, alice) == [
            "team@example.com", "boss@example.com", "alice@example.com",
        ]

    def test_current_user_is_owner_uses_current_email(self, resolver):
        me = User(login="alice", email="alice.session@example.com")
        assert resolver.resolve(_report(), me) == ["alice.session@example.com"]

    def test_super_user_owner(self, resolver, alice):
        assert resolver.resolve(_report(owner="admin"), alice) == ["admin@example.com"]

    def test_owner_looked_up_in_directory(self, resolver):
        scheduler_identity = User(login="admin", email="admin@example.com")
        assert resolver.resolve(_report(owner="bob"), scheduler_identity) == ["bob@example.com"]

    def test_owner_lookup_without_current_user(self, resolver):
        assert resolver.resolve(_report(owner="bob"), None) == ["bob@example.com"]

    def test_unknown_owner_aborts(self, resolver, alice):
        with pytest.raises(RecipientResolutionAborted) as exc:
            resolver.resolve(_report(owner="ghost", additional=["team@example.com"]), alice)
        assert exc.value.login == "ghost"

    def test_email_me_off_skips_owner_lookup(self, resolver, alice):
        report = _report(owner="ghost", email_me=False, additional=["team@example.com"])
        assert resolver.resolve(report, alice) == ["team@example.com"]

    def test_email_me_defaults_to_true(self, resolver, alice):
        report = ReportDefinition(id=1, owner_login="alice", parameters={})
        assert resolver.resolve(report, alice) == ["alice@example.com"]

    def test_blanks_dropped_and_duplicates_removed(self, resolver, alice):
        report = _report(additional=["alice@example.com", "", "  ", "team@example.com", "alice@example.com"])
        assert resolver.resolve(report, alice) == ["alice@example.com", "team@example.com"]

    def test_empty_owner_email_dropped(self, users, seeded, alice):
        users.upsert(User(login="carol", email=""))
        resolver = RecipientResolver(users)
        assert resolver.resolve(_report(owner="carol", additional=["team@example.com"]), alice) == [
            "team@example.com",
        ]

    def test_nobody_to_send_to(self, resolver, alice):
        assert resolver.resolve(_report(email_me=False), alice) == []


class TestPreview:

    def test_current_user_first(self, resolver, alice):
        report = _report(owner="bob", additional=["team@example.com"])
        assert resolver.preview(report, alice) == ["alice@example.com", "team@example.com"]

    def test_never_aborts(self, resolver, alice):
        report = _report(owner="ghost", additional=["team@example.com"])
        assert resolver.preview(report, alice) == ["alice@example.com", "team@example.com"]

    def test_email_me_off(self, resolver, alice):
        report = _report(email_me=False, additional=["", "team@example.com"])
        assert resolver.preview(report, alice) == ["team@example.com"]
