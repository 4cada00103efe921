import unittest
from dataclasses import replace
from datetime import date
from unittest import mock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lottery_fixtures import CLUB_ID, PLAY_DATE, LotteryDBTestCase
from teelottery.errors import InvalidTransition, PermissionDenied, PersistenceFailure
from teelottery.lottery.allocation import Assignment, WindowMatch, allocate
from teelottery.lottery.finalization import FinalizationCoordinator
from teelottery.lottery.intake import EntryIntake
from teelottery.lottery.loader import load_lottery_inputs
from teelottery.lottery.restrictions import RestrictionViolation
from teelottery.models import (
    BookingSource,
    LotteryDate,
    LotteryDateStatus,
    LotteryEntry,
    LotteryEntryStatus,
    LotteryGroup,
    MemberFairnessScore,
    RestrictionOverride,
    TimeBlockBooking,
)


class FakeChecker:
    """Flags one member on every block."""

    def __init__(self, member_id, *, can_override=True):
        self.member_id = member_id
        self.can_override = can_override
        self.recorded = []

    def check_violations(self, member_ids, slot):
        if self.member_id not in member_ids:
            return []
        return [
            RestrictionViolation(
                restriction_id="guest-limit",
                restriction_name="Guest limit",
                member_id=self.member_id,
                time_block_id=slot.id,
                message=f"Member {self.member_id} exceeded the guest limit",
                can_override=self.can_override,
            )
        ]

    def record_override(self, violation, reason):
        self.recorded.append((violation.restriction_id, reason))


class FinalizationTestCase(LotteryDBTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.Session()
        self.addCleanup(self.session.close)
        self.teesheet = self.add_day(self.session)
        self.morning = self.block_at(self.teesheet, "06:00")
        self.midday = self.block_at(self.teesheet, "09:00")
        self.afternoon = self.block_at(self.teesheet, "12:00")
        self.members = self.add_members(self.session, 10)
        self.session.commit()
        self.intake = EntryIntake(self.session, self.member_ctx)

    def enter(self, index, preferred="MORNING", alternate=None):
        return self.intake.submit_entry(self.members[index].id, PLAY_DATE, preferred, alternate)

    def book_manually(self, block, *indexes):
        for index in indexes:
            self.session.add(
                TimeBlockBooking(
                    club_id=CLUB_ID,
                    time_block_id=block.id,
                    member_id=self.members[index].id,
                    booking_date=PLAY_DATE,
                    booking_time=block.start_time,
                    source=BookingSource.MANUAL,
                )
            )
        self.session.flush()

    def assignment(self):
        inputs = load_lottery_inputs(self.session, CLUB_ID, PLAY_DATE)
        return allocate(inputs.units, inputs.slots, inputs.windows, inputs.profiles, inputs.fairness)

    def coordinator(self, **kwargs):
        return FinalizationCoordinator(self.session, self.admin, **kwargs)

    def start(self):
        self.coordinator().start_processing(PLAY_DATE)
        self.session.commit()

    def score(self, index):
        row = self.session.scalar(
            select(MemberFairnessScore).where(
                MemberFairnessScore.member_id == self.members[index].id
            )
        )
        return row.fairness_score if row is not None else None

    def lottery_bookings(self):
        return self.session.scalars(
            select(TimeBlockBooking).where(TimeBlockBooking.source == BookingSource.LOTTERY)
        ).all()


class FinalizeTests(FinalizationTestCase):
    def test_fairness_decides_the_last_seat(self) -> None:
        # Three seats of the morning block are already taken.
        self.book_manually(self.morning, 7, 8, 9)
        self.set_fairness(self.session, self.members[0], 3)
        early = self.enter(1)
        late_but_waiting = self.enter(0)
        self.start()

        report = self.coordinator().finalize(PLAY_DATE, self.assignment())

        self.assertEqual([b.unit_key for b in report.booked], [f"entry:{late_but_waiting.id}"])
        self.assertEqual(report.unassigned, [f"entry:{early.id}"])
        self.assertEqual(late_but_waiting.status, LotteryEntryStatus.ASSIGNED)
        self.assertEqual(late_but_waiting.assigned_time_block_id, self.morning.id)
        self.assertEqual(early.status, LotteryEntryStatus.PENDING)
        self.assertEqual(self.score(0), 0)
        self.assertEqual(self.score(1), 1)
        bookings = self.lottery_bookings()
        self.assertEqual([b.member_id for b in bookings], [self.members[0].id])
        self.assertEqual(bookings[0].booking_time, "06:00")

        control = LotteryDate.get(self.session, CLUB_ID, PLAY_DATE)
        self.assertEqual(control.status, LotteryDateStatus.COMPLETED)
        self.assertIsNotNone(control.completed_at)

    def test_second_finalize_changes_nothing(self) -> None:
        self.enter(0)
        self.enter(1, preferred="EVENING")
        self.start()
        assignment = self.assignment()
        first = self.coordinator().finalize(PLAY_DATE, assignment)

        second = self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertFalse(first.already_completed)
        self.assertTrue(second.already_completed)
        self.assertEqual(second.booked, [])
        self.assertEqual(len(self.lottery_bookings()), 2)
        self.assertEqual(self.score(0), 0)
        total_entries = self.session.scalar(
            select(MemberFairnessScore.total_entries).where(
                MemberFairnessScore.member_id == self.members[0].id
            )
        )
        self.assertEqual(total_entries, 1)

    def test_group_booked_together_and_alternate_outcome(self) -> None:
        leader, *others = [m.id for m in self.members[:4]]
        group = self.intake.submit_group(leader, PLAY_DATE, others, "MORNING")
        # Equal fairness, so the earlier group goes first.
        self.set_fairness(self.session, self.members[0], 2)
        self.set_fairness(self.session, self.members[4], 2)
        fallback = self.enter(4, preferred="MORNING", alternate="MIDDAY")
        self.start()

        report = self.coordinator().finalize(PLAY_DATE, self.assignment())

        booked = {b.unit_key: b for b in report.booked}
        self.assertEqual(booked[f"group:{group.id}"].time_block_id, self.morning.id)
        self.assertEqual(booked[f"entry:{fallback.id}"].match, WindowMatch.ALTERNATE)
        self.assertEqual(booked[f"entry:{fallback.id}"].time_block_id, self.midday.id)
        self.assertEqual(report.members_booked, 5)
        self.assertEqual(group.status, LotteryEntryStatus.ASSIGNED)
        for index in range(4):
            self.assertEqual(self.score(index), 0)
        self.assertEqual(self.score(4), 1)

    def test_requires_processing_state_and_admin(self) -> None:
        self.enter(0)
        with self.assertRaises(InvalidTransition):
            self.coordinator().finalize(PLAY_DATE, self.assignment())
        with self.assertRaises(PermissionDenied):
            FinalizationCoordinator(self.session, self.member_ctx).finalize(
                PLAY_DATE, self.assignment()
            )
        with self.assertRaises(PermissionDenied):
            FinalizationCoordinator(self.session, self.member_ctx).start_processing(PLAY_DATE)

        self.start()
        with self.assertRaises(InvalidTransition):
            self.coordinator().start_processing(PLAY_DATE)

    def test_submission_no_longer_pending_is_skipped(self) -> None:
        entry = self.enter(0)
        self.start()
        assignment = self.assignment()
        entry.status = LotteryEntryStatus.CANCELLED
        self.session.commit()

        report = self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertEqual(report.skipped, [f"entry:{entry.id}"])
        self.assertEqual(report.fairness, [])
        self.assertEqual(self.lottery_bookings(), [])


    def test_fairness_updates_run_in_member_order(self) -> None:
        self.set_fairness(self.session, self.members[5], 3)
        self.enter(2)
        self.enter(5)
        self.start()

        report = self.coordinator().finalize(PLAY_DATE, self.assignment())

        self.assertEqual(
            [c.member_id for c in report.fairness],
            [self.members[2].id, self.members[5].id],
        )

class CapacityConflictTests(FinalizationTestCase):
    def test_stale_assignment_is_demoted(self) -> None:
        first = self.enter(0)
        second = self.enter(1)
        self.start()
        assignment = self.assignment()
        self.assertEqual(assignment.slot_for(f"entry:{second.id}"), self.morning.id)
        # Manual bookings after the preview leave a single seat.
        self.book_manually(self.morning, 7, 8, 9)
        self.session.commit()

        report = self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertEqual([b.unit_key for b in report.booked], [f"entry:{first.id}"])
        self.assertEqual([c.unit_key for c in report.conflicts], [f"entry:{second.id}"])
        self.assertEqual(report.conflicts[0].time_block_id, self.morning.id)
        self.assertEqual(second.status, LotteryEntryStatus.PENDING)
        self.assertEqual(self.score(1), 1)
        self.assertEqual(self.morning.remaining_capacity(self.session), 0)

    def test_member_already_booked_that_day(self) -> None:
        entry = self.enter(0)
        self.start()
        assignment = self.assignment()
        self.book_manually(self.afternoon, 0)
        self.session.commit()

        report = self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertEqual([c.unit_key for c in report.conflicts], [f"entry:{entry.id}"])
        self.assertIn("already hold a booking", report.conflicts[0].message)
        self.assertEqual(self.lottery_bookings(), [])


    def test_block_from_another_date_is_demoted(self) -> None:
        other_sheet = self.add_day(self.session, play_date=date(2026, 10, 21))
        foreign = self.block_at(other_sheet, "06:00")
        entry = self.enter(0)
        key = f"entry:{entry.id}"
        self.start()
        placement = self.assignment().placement_for(key)
        edited = Assignment(
            placements=(replace(placement, slot_id=foreign.id),),
            unassigned=(),
            remaining_capacity=(),
        )
        checker = FakeChecker(self.members[0].id)

        reviewed = self.coordinator(checker=checker).check_restrictions(PLAY_DATE, edited)
        self.assertEqual(reviewed, {})
        report = self.coordinator().finalize(PLAY_DATE, edited)

        self.assertEqual([c.unit_key for c in report.conflicts], [key])
        self.assertIn("not on the teesheet", report.conflicts[0].message)
        self.assertEqual(self.lottery_bookings(), [])
        self.assertEqual(entry.status, LotteryEntryStatus.PENDING)
        self.assertEqual(foreign.remaining_capacity(self.session), 4)


class RestrictionTests(FinalizationTestCase):
    def test_violation_blocks_without_override(self) -> None:
        entry = self.enter(0)
        self.enter(1)
        self.start()
        checker = FakeChecker(self.members[0].id)

        violations = self.coordinator(checker=checker).check_restrictions(
            PLAY_DATE, self.assignment()
        )
        self.assertEqual(list(violations), [f"entry:{entry.id}"])

        report = self.coordinator(checker=checker).finalize(PLAY_DATE, self.assignment())

        self.assertEqual([b.unit_key for b in report.blocked], [f"entry:{entry.id}"])
        self.assertEqual(len(report.booked), 1)
        self.assertEqual(entry.status, LotteryEntryStatus.PENDING)
        self.assertEqual(self.score(0), 1)
        self.assertEqual(self.session.query(RestrictionOverride).count(), 0)
        self.assertEqual(checker.recorded, [])

    def test_override_books_and_audits(self) -> None:
        entry = self.enter(0)
        self.start()
        checker = FakeChecker(self.members[0].id)
        key = f"entry:{entry.id}"

        report = self.coordinator(checker=checker).finalize(
            PLAY_DATE, self.assignment(), overrides={key: "Approved by the pro shop"}
        )

        self.assertEqual([b.unit_key for b in report.booked], [key])
        self.assertEqual(len(report.overrides), 1)
        audit = self.session.scalars(select(RestrictionOverride)).one()
        self.assertEqual(audit.reason, "Approved by the pro shop")
        self.assertEqual(audit.restriction_id, "guest-limit")
        self.assertEqual(audit.entity_type, "entry")
        self.assertEqual(audit.entity_id, entry.id)
        self.assertEqual(audit.admin_id, "admin-1")
        self.assertEqual(checker.recorded, [("guest-limit", "Approved by the pro shop")])

        audit.reason = "edited"
        with self.assertRaises(RuntimeError):
            self.session.flush()
        self.session.rollback()

    def test_blank_reason_still_blocks(self) -> None:
        entry = self.enter(0)
        self.start()
        key = f"entry:{entry.id}"
        checker = FakeChecker(self.members[0].id)

        report = self.coordinator(checker=checker).finalize(
            PLAY_DATE, self.assignment(), overrides={key: "   "}
        )
        self.assertEqual([b.unit_key for b in report.blocked], [key])

    def test_hard_rule_ignores_override(self) -> None:
        entry = self.enter(0)
        self.start()
        key = f"entry:{entry.id}"
        hard = FakeChecker(self.members[0].id, can_override=False)

        report = self.coordinator(checker=hard).finalize(
            PLAY_DATE, self.assignment(), overrides={key: "please"}
        )

        self.assertEqual([b.unit_key for b in report.blocked], [key])
        self.assertEqual(report.overrides, [])


class PersistenceFailureTests(FinalizationTestCase):
    def failing_completion(self):
        original = LotteryDate.transition_to

        def transition(control, target):
            if target == LotteryDateStatus.COMPLETED:
                raise OperationalError("UPDATE lottery_dates", {}, Exception("disk I/O error"))
            return original(control, target)

        return mock.patch.object(
            LotteryDate, "transition_to", autospec=True, side_effect=transition
        )

    def test_unit_write_failure_rolls_back_only_that_unit(self) -> None:
        failing = self.enter(0)
        fine = self.enter(1)
        self.start()
        assignment = self.assignment()
        original = TimeBlockBooking.booked_member_ids
        failing_member = self.members[0].id

        def flaky(session, club_id, on_date, member_ids):
            if failing_member in member_ids:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return original(session, club_id, on_date, member_ids)

        with mock.patch.object(TimeBlockBooking, "booked_member_ids", side_effect=flaky):
            report = self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertEqual([f.unit_key for f in report.failures], [f"entry:{failing.id}"])
        self.assertEqual([b.unit_key for b in report.booked], [f"entry:{fine.id}"])
        self.assertEqual(failing.status, LotteryEntryStatus.PENDING)
        self.assertEqual(self.score(0), 1)

    def test_control_record_failure_rolls_back_everything(self) -> None:
        entry = self.enter(0)
        entry_id = entry.id
        self.start()
        assignment = self.assignment()

        with self.failing_completion():
            with self.assertRaises(PersistenceFailure) as ctx:
                self.coordinator().finalize(PLAY_DATE, assignment)

        self.assertEqual(ctx.exception.unit_key, f"date:{PLAY_DATE.isoformat()}")
        # In-memory SQLite gives both sessions one connection.
        self.session.close()
        with self.Session() as check:
            control = LotteryDate.get(check, CLUB_ID, PLAY_DATE)
            self.assertEqual(control.status, LotteryDateStatus.PENDING)
            self.assertIn("disk I/O error", control.last_error)
            self.assertEqual(check.query(TimeBlockBooking).count(), 0)
            self.assertEqual(check.get(LotteryEntry, entry_id).status, LotteryEntryStatus.PENDING)
            self.assertEqual(check.query(MemberFairnessScore).count(), 0)

        # The date can be processed again once the fault clears.
        self.start()
        report = self.coordinator().finalize(PLAY_DATE, self.assignment())
        self.assertEqual([b.unit_key for b in report.booked], [f"entry:{entry_id}"])
        control = LotteryDate.get(self.session, CLUB_ID, PLAY_DATE)
        self.assertIsNone(control.last_error)

    def test_override_not_reported_when_the_date_fails(self) -> None:
        entry = self.enter(0)
        self.start()
        checker = FakeChecker(self.members[0].id)

        with self.failing_completion():
            with self.assertRaises(PersistenceFailure):
                self.coordinator(checker=checker).finalize(
                    PLAY_DATE, self.assignment(), overrides={f"entry:{entry.id}": "Approved"}
                )

        self.assertEqual(checker.recorded, [])
        self.assertEqual(self.session.query(RestrictionOverride).count(), 0)


class ReportTests(FinalizationTestCase):
    def test_report_serializes(self) -> None:
        self.enter(0)
        self.enter(1, preferred="EVENING")
        self.start()

        data = self.coordinator().finalize(PLAY_DATE, self.assignment()).to_dict()

        self.assertEqual(data["lottery_date"], PLAY_DATE.isoformat())
        self.assertEqual(len(data["booked"]), 2)
        self.assertEqual(
            sorted(c["outcome"] for c in data["fairness"]), ["PREFERRED", "PREFERRED"]
        )
        self.assertIsNotNone(data["completed_at"])

    def test_groups_and_entries_on_other_dates_untouched(self) -> None:
        other_day = date(2026, 10, 21)
        self.add_day(self.session, play_date=other_day)
        other = self.intake.submit_entry(self.members[5].id, other_day, "MORNING")
        self.enter(0)
        self.start()

        self.coordinator().finalize(PLAY_DATE, self.assignment())

        self.assertEqual(other.status, LotteryEntryStatus.PENDING)
        self.assertEqual(self.session.query(LotteryGroup).count(), 0)
        other_control = LotteryDate.get(self.session, CLUB_ID, other_day)
        self.assertEqual(other_control.status, LotteryDateStatus.PENDING)


if __name__ == "__main__":
    unittest.main()
