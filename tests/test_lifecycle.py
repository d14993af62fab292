"""
Scheduled Reports — Lifecycle Hook Tests
========================================
Tests: segment deactivation guard, site and user removal cascades
"""

import pytest

from scheduled_reports.errors import SegmentInUse
from scheduled_reports.lifecycle import (
    deactivate_segment,
    delete_site_reports,
    delete_user_reports,
    ensure_segment_unused,
)


class RecordingScheduler:
    def __init__(self):
        self.removed = []

    def remove_report(self, report_id):
        self.removed.append(report_id)


class TestSegmentGuard:

    def test_unused_segment_passes(self, reports, seeded):
        ensure_segment_unused(reports, seeded["mobile"])

    def test_used_segment_lists_reports(self, reports, make_report, seeded):
        make_report(segment_id=seeded["mobile"], description="Mobile weekly")
        make_report(segment_id=seeded["mobile"], description="Mobile monthly", period="month")

        with pytest.raises(SegmentInUse) as exc:
            ensure_segment_unused(reports, seeded["mobile"])

        assert exc.value.descriptions == ["Mobile weekly", "Mobile monthly"]
        assert str(exc.value) == (
            "This segment cannot be deleted or deactivated because it is used by the "
            "following scheduled reports: 'Mobile weekly' and 'Mobile monthly'"
        )

    def test_deleted_reports_do_not_block(self, reports, make_report, seeded):
        reports.delete_report(make_report(segment_id=seeded["mobile"]))
        ensure_segment_unused(reports, seeded["mobile"])

    def test_deactivate(self, reports, segments, seeded):
        deactivate_segment(reports, segments, seeded["mobile"], user="alice")
        assert segments.get_active(seeded["mobile"]) is None
        assert segments.get_by_id(seeded["mobile"]).deleted is True

    def test_deactivate_refused_while_in_use(self, reports, segments, make_report, seeded):
        make_report(segment_id=seeded["mobile"])
        with pytest.raises(SegmentInUse):
            deactivate_segment(reports, segments, seeded["mobile"])
        assert segments.get_active(seeded["mobile"]) is not None


class TestCascades:

    def test_site_removal_soft_deletes_its_reports(self, reports, make_report, seeded):
        shop_a = make_report()
        shop_b = make_report(period="day")
        blog = make_report(site_id=seeded["blog"])
        scheduler = RecordingScheduler()

        deleted = delete_site_reports(reports, seeded["shop"], scheduler=scheduler)

        assert deleted == [shop_a, shop_b]
        assert scheduler.removed == [shop_a, shop_b]
        assert reports.get_report(shop_a).deleted is True
        assert reports.get_report(blog).deleted is False

    def test_site_without_reports(self, reports, seeded):
        assert delete_site_reports(reports, seeded["blog"]) == []

    def test_user_removal_deletes_owned_reports(self, reports, make_report):
        mine = make_report(owner_login="bob")
        also_mine = make_report(owner_login="bob", period="day")
        theirs = make_report()
        scheduler = RecordingScheduler()

        count = delete_user_reports(reports, "bob", scheduler=scheduler)

        assert count == 2
        assert scheduler.removed == [mine, also_mine]
        assert reports.get_by_id(mine) is None
        assert reports.get_by_id(theirs) is not None

    def test_user_without_reports(self, reports, seeded):
        assert delete_user_reports(reports, "nobody") == 0
