import unittest
from datetime import date

from lottery_fixtures import CLUB_ID, PLAY_DATE, LotteryDBTestCase
from teelottery.errors import LotteryClosed, PermissionDenied
from teelottery.lottery.allocation import AssignmentMove
from teelottery.lottery.profiles import ProfileUpdate
from teelottery.lottery.restrictions import RestrictionViolation
from teelottery.models import (
    ConfigType,
    LotteryDate,
    LotteryDateStatus,
    LotteryEntryStatus,
    SpeedTier,
    Teesheet,
    TimeWindow,
)
from teelottery.workflows import (
    adjust_lottery_assignment,
    bulk_update_speed_profiles,
    cancel_lottery_submission,
    clear_lottery_entries,
    finalize_lottery,
    get_fairness_scores,
    get_lottery_status,
    get_lottery_windows,
    get_member_lottery_entry,
    get_speed_profile,
    preview_lottery,
    record_pace_of_play,
    reset_all_priority_adjustments,
    review_lottery_restrictions,
    set_priority_adjustment,
    start_lottery_processing,
    submit_lottery_entry,
    submit_lottery_group,
    update_lottery_entry,
    update_lottery_group,
    update_speed_profile,
)


class TwilightChecker:
    """Requires an override for one member on the 15:00 block."""

    def __init__(self, member_id):
        self.member_id = member_id

    def check_violations(self, member_ids, slot):
        if slot.start_time != "15:00" or self.member_id not in member_ids:
            return []
        return [
            RestrictionViolation(
                restriction_id="twilight",
                restriction_name="Twilight members only",
                member_id=self.member_id,
                time_block_id=slot.id,
                message="Twilight block is reserved",
            )
        ]

    def record_override(self, violation, reason):
        return None


class LotteryWorkflowTestCase(LotteryDBTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.Session()
        self.addCleanup(self.session.close)
        self.add_day(self.session)
        self.members = [m.id for m in self.add_members(self.session, 8)]
        self.session.commit()


class WindowAndStatusTests(LotteryWorkflowTestCase):
    def test_windows_for_dates_with_and_without_lottery(self) -> None:
        windows = get_lottery_windows(self.session, self.member_ctx, PLAY_DATE)
        self.assertEqual([w.value for w in windows], list(TimeWindow))

        custom_day = date(2026, 10, 23)
        self.add_day(
            self.session,
            play_date=custom_day,
            start=None,
            end=None,
            config_type=ConfigType.CUSTOM,
        )
        self.assertEqual(get_lottery_windows(self.session, self.member_ctx, custom_day), [])
        self.assertEqual(
            get_lottery_windows(self.session, self.member_ctx, date(2026, 12, 1)), []
        )

    def test_status_counts(self) -> None:
        first, second, leader, buddy = self.members[:4]
        entry = submit_lottery_entry(self.session, self.member_ctx, first, PLAY_DATE, "MORNING")
        submit_lottery_entry(self.session, self.member_ctx, second, PLAY_DATE, "MIDDAY")
        submit_lottery_group(self.session, self.member_ctx, leader, PLAY_DATE, [buddy], "EVENING")
        cancel_lottery_submission(self.session, self.member_ctx, entry_id=entry.id)

        status = get_lottery_status(self.session, self.admin, PLAY_DATE)

        self.assertEqual(status["status"], "PENDING")
        self.assertTrue(status["lottery_available"])
        self.assertEqual(status["entries"], {"PENDING": 1, "CANCELLED": 1})
        self.assertEqual(status["groups"], {"PENDING": 1})
        self.assertIsNone(status["last_error"])

    def test_status_of_untouched_date(self) -> None:
        status = get_lottery_status(self.session, self.admin, date(2026, 12, 1))
        self.assertEqual(status["status"], "PENDING")
        self.assertFalse(status["lottery_available"])
        self.assertEqual(status["entries"], {})


class SubmissionWorkflowTests(LotteryWorkflowTestCase):
    def test_lookup_and_cancel(self) -> None:
        leader, buddy = self.members[:2]
        group = submit_lottery_group(
            self.session, self.member_ctx, leader, PLAY_DATE, [buddy], "MORNING", "MIDDAY", "07:10"
        )

        found = get_member_lottery_entry(self.session, self.member_ctx, buddy, PLAY_DATE)
        self.assertEqual(found.kind, "group_member")
        self.assertEqual(found.group.specific_time, "07:10")

        cancel_lottery_submission(self.session, self.member_ctx, group_id=group.id)
        self.assertFalse(
            get_member_lottery_entry(self.session, self.member_ctx, buddy, PLAY_DATE).found
        )

    def test_cancel_needs_exactly_one_id(self) -> None:
        with self.assertRaises(ValueError):
            cancel_lottery_submission(self.session, self.member_ctx)
        with self.assertRaises(ValueError):
            cancel_lottery_submission(self.session, self.member_ctx, entry_id=1, group_id=1)

    def test_clear_entries(self) -> None:
        submit_lottery_entry(self.session, self.member_ctx, self.members[0], PLAY_DATE, "MORNING")
        with self.assertRaises(PermissionDenied):
            clear_lottery_entries(self.session, self.member_ctx, PLAY_DATE)
        self.assertEqual(clear_lottery_entries(self.session, self.admin, PLAY_DATE), 1)


class LotteryRunTests(LotteryWorkflowTestCase):
    def submit_field(self):
        m = self.members
        submit_lottery_entry(self.session, self.member_ctx, m[0], PLAY_DATE, "MORNING", "MIDDAY")
        submit_lottery_entry(self.session, self.member_ctx, m[1], PLAY_DATE, "MORNING", "MIDDAY")
        submit_lottery_group(
            self.session, self.member_ctx, m[2], PLAY_DATE, [m[3], m[4]], "MORNING", "EVENING"
        )
        submit_lottery_entry(self.session, self.member_ctx, m[5], PLAY_DATE, "EVENING")
        submit_lottery_entry(self.session, self.member_ctx, m[6], PLAY_DATE, "AFTERNOON")
        self.session.commit()

    def test_preview_is_admin_only_and_repeatable(self) -> None:
        self.submit_field()
        with self.assertRaises(PermissionDenied):
            preview_lottery(self.session, self.member_ctx, PLAY_DATE)

        first = preview_lottery(self.session, self.admin, PLAY_DATE)
        second = preview_lottery(self.session, self.admin, PLAY_DATE)

        self.assertEqual(first.assignment, second.assignment)
        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(first.stats["total_units"], 5)
        self.assertEqual(first.stats["seats_open"], 16)
        self.assertEqual(first.to_dict()["lottery_date"], PLAY_DATE.isoformat())

    def test_full_run(self) -> None:
        self.submit_field()
        set_priority_adjustment(self.session, self.admin, self.members[1], 3)
        self.session.commit()

        preview = preview_lottery(self.session, self.admin, PLAY_DATE)
        mapping = preview.assignment.mapping()
        self.assertEqual(len(mapping), 5)

        start_lottery_processing(self.session, self.admin, PLAY_DATE)
        self.session.commit()
        with self.assertRaises(LotteryClosed):
            submit_lottery_entry(
                self.session, self.member_ctx, self.members[7], PLAY_DATE, "MORNING"
            )

        checker = TwilightChecker(self.members[5])
        violations = review_lottery_restrictions(
            self.session, self.admin, PLAY_DATE, preview.assignment, checker=checker
        )
        self.assertEqual(len(violations), 1)
        (blocked_key,) = violations

        report = finalize_lottery(
            self.session,
            self.admin,
            PLAY_DATE,
            preview.assignment,
            overrides={blocked_key: "Club captain approval"},
            checker=checker,
        )

        self.assertEqual(len(report.booked), 5)
        self.assertEqual(len(report.overrides), 1)
        self.assertEqual(report.members_booked, 7)
        status = get_lottery_status(self.session, self.admin, PLAY_DATE)
        self.assertEqual(status["status"], LotteryDateStatus.COMPLETED.value)
        self.assertEqual(status["entries"], {LotteryEntryStatus.ASSIGNED.value: 4})
        self.assertEqual(status["groups"], {LotteryEntryStatus.ASSIGNED.value: 1})

        again = finalize_lottery(self.session, self.admin, PLAY_DATE)
        self.assertTrue(again.already_completed)

    def test_finalize_without_assignment_uses_fresh_preview(self) -> None:
        self.submit_field()
        start_lottery_processing(self.session, self.admin, PLAY_DATE)
        self.session.commit()

        report = finalize_lottery(self.session, self.admin, PLAY_DATE)

        # Both entries take morning seats, so the group falls back to evening.
        self.assertEqual(len(report.booked), 5)
        control = LotteryDate.get(self.session, CLUB_ID, PLAY_DATE)
        self.assertEqual(control.status, LotteryDateStatus.COMPLETED)
        scores = get_fairness_scores(self.session, self.admin)
        self.assertEqual(len(scores), 7)


    def test_adjusted_assignment_is_finalized(self) -> None:
        self.submit_field()
        m = self.members
        teesheet = Teesheet.get_for_date(self.session, CLUB_ID, PLAY_DATE)
        midday = self.block_at(teesheet, "09:00").id
        preview = preview_lottery(self.session, self.admin, PLAY_DATE)
        keys = {p.unit.member_ids[0]: p.unit.key for p in preview.assignment.placements}
        moves = [AssignmentMove(keys[m[1]], midday), AssignmentMove(keys[m[6]], None)]

        with self.assertRaises(PermissionDenied):
            adjust_lottery_assignment(
                self.session, self.member_ctx, PLAY_DATE, preview.assignment, moves
            )
        adjusted = adjust_lottery_assignment(
            self.session, self.admin, PLAY_DATE, preview.assignment, moves
        )
        self.assertEqual(adjusted.stats["total_units"], 5)
        self.assertEqual(adjusted.assignment.slot_for(keys[m[1]]), midday)

        start_lottery_processing(self.session, self.admin, PLAY_DATE)
        self.session.commit()
        report = finalize_lottery(self.session, self.admin, PLAY_DATE, adjusted.assignment)

        self.assertEqual(len(report.booked), 4)
        self.assertEqual(report.unassigned, [keys[m[6]]])
        moved = get_member_lottery_entry(self.session, self.admin, m[1], PLAY_DATE).entry
        self.assertEqual(moved.assigned_time_block_id, midday)

    def test_admin_corrects_submissions(self) -> None:
        leader, buddy, extra, solo = self.members[:4]
        group = submit_lottery_group(
            self.session, self.member_ctx, leader, PLAY_DATE, [buddy], "MORNING"
        )
        entry = submit_lottery_entry(self.session, self.member_ctx, solo, PLAY_DATE, "MORNING")

        update_lottery_group(
            self.session, self.admin, group.id, [leader, buddy, extra], "EVENING", "MORNING"
        )
        update_lottery_entry(self.session, self.admin, entry.id, "MIDDAY", specific_time="9:30")

        self.assertEqual(group.member_ids, (leader, buddy, extra))
        self.assertEqual(group.alternate_window, TimeWindow.MORNING)
        self.assertEqual(entry.preferred_window, TimeWindow.MIDDAY)
        self.assertEqual(entry.specific_time, "09:30")
        with self.assertRaises(PermissionDenied):
            update_lottery_entry(self.session, self.member_ctx, entry.id, "EVENING")



class SpeedProfileWorkflowTests(LotteryWorkflowTestCase):
    def test_admin_only_edits(self) -> None:
        member = self.members[0]
        for call in (
            lambda ctx: set_priority_adjustment(self.session, ctx, member, 2),
            lambda ctx: update_speed_profile(self.session, ctx, member, speed_tier=SpeedTier.SLOW),
            lambda ctx: bulk_update_speed_profiles(self.session, ctx, []),
            lambda ctx: reset_all_priority_adjustments(self.session, ctx),
            lambda ctx: record_pace_of_play(self.session, ctx, member, 240),
        ):
            with self.assertRaises(PermissionDenied):
                call(self.member_ctx)
            call(self.admin)

    def test_update_profile_fields(self) -> None:
        member = self.members[0]
        update_speed_profile(
            self.session, self.admin, member, priority_adjustment=-4, notes="slow group"
        )
        profile = get_speed_profile(self.session, self.member_ctx, member)
        self.assertEqual(profile.admin_priority_adjustment, -4)
        self.assertEqual(profile.notes, "slow group")

        update_speed_profile(self.session, self.admin, member, priority_adjustment=1)
        self.assertEqual(profile.notes, "slow group")
        update_speed_profile(self.session, self.admin, member, notes=None)
        self.assertIsNone(profile.notes)
        self.assertEqual(profile.admin_priority_adjustment, 1)

        with self.assertRaises(TypeError):
            update_speed_profile(self.session, self.admin, member, handicap=12)

    def test_bulk_update_and_reset(self) -> None:
        first, second = self.members[:2]
        stale: list[list[int]] = []

        result = bulk_update_speed_profiles(
            self.session,
            self.admin,
            [ProfileUpdate(first, 6), ProfileUpdate(second, -20)],
            stale_listeners=[stale.append],
        )
        self.assertEqual(result.updated_member_ids, [first])
        self.assertEqual(stale, [[first]])

        reset = reset_all_priority_adjustments(self.session, self.admin)
        self.assertEqual(reset.updated_member_ids, [first])
        profile = get_speed_profile(self.session, self.admin, first)
        self.assertEqual(profile.admin_priority_adjustment, 0)


if __name__ == "__main__":
    unittest.main()
