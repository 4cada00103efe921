import threading
import unittest

from lottery_fixtures import CLUB_ID, LotteryDBTestCase
from teelottery.config import SpeedTierThresholds
from teelottery.context import ClubContext
from teelottery.errors import OutOfRange, UnknownMember, ValidationError
from teelottery.lottery.profiles import (
    MemberLockRegistry,
    ProfileUpdate,
    SpeedProfileStore,
)
from teelottery.lottery.scoring import FairnessOutcome
from teelottery.models import Member, MemberSpeedProfile, SpeedTier


class SpeedProfileStoreTestCase(LotteryDBTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.Session()
        self.addCleanup(self.session.close)
        self.members = self.add_members(self.session, 4)
        self.session.commit()

    def store(self, **kwargs) -> SpeedProfileStore:
        kwargs.setdefault("thresholds", SpeedTierThresholds())
        kwargs.setdefault("locks", MemberLockRegistry())
        return SpeedProfileStore(self.session, self.admin, **kwargs)


class AdjustmentTests(SpeedProfileStoreTestCase):
    def test_default_profile_is_not_persisted(self) -> None:
        member = self.members[0]
        profile = self.store().get_profile(member.id)

        self.assertEqual(profile.speed_tier, SpeedTier.AVERAGE)
        self.assertEqual(profile.admin_priority_adjustment, 0)
        self.assertNotIn(profile, self.session)
        self.assertEqual(self.session.query(MemberSpeedProfile).count(), 0)

    def test_unknown_or_foreign_member(self) -> None:
        outsider = Member(
            club_id="other-club", member_number="X1", first_name="Out", last_name="Sider"
        )
        self.session.add(outsider)
        self.session.flush()

        with self.assertRaises(UnknownMember):
            self.store().get_profile(9999)
        with self.assertRaises(UnknownMember):
            self.store().set_adjustment(outsider.id, 2)

    def test_set_adjustment_bounds(self) -> None:
        member = self.members[0]
        store = self.store()

        profile = store.set_adjustment(member.id, -10, notes="slow starter")
        self.assertEqual(profile.admin_priority_adjustment, -10)
        self.assertEqual(profile.notes, "slow starter")

        for bad in (11, -11, 2.5, True, "3"):
            with self.subTest(value=bad):
                with self.assertRaises(OutOfRange):
                    store.set_adjustment(member.id, bad)

        self.session.expire_all()
        self.assertEqual(store.get_profile(member.id).admin_priority_adjustment, -10)

    def test_out_of_range_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            self.store().set_adjustment(self.members[0].id, 50)
        self.assertEqual(self.session.query(MemberSpeedProfile).count(), 0)

    def test_update_profile_pins_tier(self) -> None:
        member = self.members[0]
        store = self.store()
        store.set_adjustment(member.id, 1, notes="keep")

        profile = store.update_profile(member.id, speed_tier="fast")
        self.assertEqual(profile.speed_tier, SpeedTier.FAST)
        self.assertTrue(profile.manual_override)
        self.assertEqual(profile.notes, "keep")

        profile = store.update_profile(member.id, manual_override=False, notes=None)
        self.assertFalse(profile.manual_override)
        self.assertIsNone(profile.notes)

        with self.assertRaises(ValidationError):
            store.update_profile(member.id, speed_tier="LUDICROUS")


class BulkUpdateTests(SpeedProfileStoreTestCase):
    def test_partial_success_and_stale_notification(self) -> None:
        first, second = self.members[0], self.members[1]
        notified: list[list[int]] = []
        store = self.store(stale_listeners=[notified.append])

        result = store.bulk_update(
            [
                ProfileUpdate(first.id, 5, notes="league captain"),
                ProfileUpdate(second.id, 11),
                ProfileUpdate(9999, 3),
            ]
        )

        self.assertFalse(result.success)
        self.assertEqual(result.updated_count, 1)
        self.assertEqual(result.updated_member_ids, [first.id])
        self.assertEqual(len(result.errors), 2)
        self.assertIn("between -10 and 10", result.errors[0])
        self.assertEqual(notified, [[first.id]])
        self.assertEqual(store.get_profile(first.id).admin_priority_adjustment, 5)
        self.assertEqual(store.get_profile(second.id).admin_priority_adjustment, 0)
        self.assertEqual(result.to_dict()["updated_count"], 1)

    def test_empty_batch_does_not_notify(self) -> None:
        notified: list[list[int]] = []
        store = self.store()
        store.add_stale_listener(notified.append)

        result = store.bulk_update([])

        self.assertTrue(result.success)
        self.assertEqual(notified, [])

    def test_reset_all_adjustments(self) -> None:
        first, second, third = self.members[:3]
        store = self.store()
        store.set_adjustment(first.id, 5, notes="a")
        store.set_adjustment(second.id, -3, notes="b")
        store.set_adjustment(third.id, 0, notes="c")

        result = store.reset_all_adjustments()

        self.assertEqual(sorted(result.updated_member_ids), sorted([first.id, second.id]))
        for member in (first, second):
            profile = store.get_profile(member.id)
            self.assertEqual(profile.admin_priority_adjustment, 0)
            self.assertIsNone(profile.notes)
        self.assertEqual(store.get_profile(third.id).notes, "c")


class PaceOfPlayTests(SpeedProfileStoreTestCase):
    def test_rolling_average_drives_tier(self) -> None:
        member = self.members[0]
        store = self.store()

        profile = store.record_pace_of_play(member.id, 230)
        self.assertEqual((profile.average_minutes, profile.speed_tier), (230.0, SpeedTier.FAST))

        profile = store.record_pace_of_play(member.id, 260)
        self.assertEqual((profile.average_minutes, profile.speed_tier), (245.0, SpeedTier.AVERAGE))

        profile = store.record_pace_of_play(member.id, 270)
        self.assertEqual(profile.speed_tier, SpeedTier.SLOW)
        self.assertEqual(profile.observation_count, 3)
        self.assertIsNotNone(profile.last_calculated)

    def test_manual_override_keeps_tier(self) -> None:
        member = self.members[0]
        store = self.store()
        store.update_profile(member.id, speed_tier=SpeedTier.FAST)

        profile = store.record_pace_of_play(member.id, 300)

        self.assertEqual(profile.speed_tier, SpeedTier.FAST)
        self.assertEqual(profile.average_minutes, 300.0)

    def test_implausible_durations_rejected(self) -> None:
        for bad in (0, -5, 5000, True):
            with self.subTest(minutes=bad), self.assertRaises(OutOfRange):
                self.store().record_pace_of_play(self.members[0].id, bad)

    def test_tier_stats(self) -> None:
        store = self.store()
        store.record_pace_of_play(self.members[0].id, 220)
        store.record_pace_of_play(self.members[1].id, 250)
        store.set_adjustment(self.members[2].id, 4)
        store.update_profile(self.members[3].id, speed_tier=SpeedTier.SLOW, priority_adjustment=-2)

        stats = store.tier_stats()

        self.assertEqual(stats["fast"], 1)
        self.assertEqual(stats["slow"], 2)
        self.assertEqual(stats["average"], 1)
        self.assertEqual(stats["total"], 4)
        self.assertEqual(stats["positive_adjustments"], 1)
        self.assertEqual(stats["negative_adjustments"], 1)
        self.assertEqual(stats["manual_overrides"], 1)


class FairnessScoreTests(SpeedProfileStoreTestCase):
    def test_outcome_sequence(self) -> None:
        member = self.members[0]
        store = self.store()

        changes = [
            store.apply_fairness_outcome(member.id, FairnessOutcome.UNASSIGNED),
            store.apply_fairness_outcome(member.id, FairnessOutcome.UNASSIGNED),
            store.apply_fairness_outcome(member.id, FairnessOutcome.ALTERNATE),
            store.apply_fairness_outcome(member.id, FairnessOutcome.PREFERRED),
            store.apply_fairness_outcome(member.id, FairnessOutcome.ALTERNATE),
        ]

        self.assertEqual([c.after for c in changes], [1, 2, 1, 0, 0])
        self.assertEqual([c.delta for c in changes], [1, 1, -1, -1, 0])
        row = store.get_fairness_score(member.id)
        self.assertEqual(row.total_entries, 5)
        self.assertEqual(row.preferences_granted, 1)
        self.assertEqual(row.days_without_good_time, 2)
        self.assertAlmostEqual(row.fulfillment_rate, 0.2)

    def test_scores_listed_highest_first(self) -> None:
        first, second, third = self.members[:3]
        self.set_fairness(self.session, first, 1)
        self.set_fairness(self.session, second, 4)
        self.set_fairness(self.session, third, 1)

        scores = self.store().fairness_scores()
        self.assertEqual([s.member_id for s in scores], [second.id, first.id, third.id])

        subset = self.store().fairness_scores([third.id])
        self.assertEqual([s.member_id for s in subset], [third.id])

    def test_missing_score_reads_as_zero(self) -> None:
        row = self.store().get_fairness_score(self.members[0].id)
        self.assertEqual(row.fairness_score, 0)
        self.assertEqual(row.fulfillment_rate, 0.0)

    def test_scoped_to_club(self) -> None:
        self.set_fairness(self.session, self.members[0], 3)
        other = SpeedProfileStore(
            self.session,
            ClubContext.admin("other-club"),
            thresholds=SpeedTierThresholds(),
        )
        self.assertEqual(other.fairness_scores(), [])
        self.assertEqual(self.store().fairness_scores()[0].club_id, CLUB_ID)


class MemberLockRegistryTests(unittest.TestCase):
    def test_same_key_shares_a_lock(self) -> None:
        registry = MemberLockRegistry()
        self.assertIs(registry._get_key_lock(("c", 1)), registry._get_key_lock(("c", 1)))
        self.assertIsNot(registry._get_key_lock(("c", 1)), registry._get_key_lock(("c", 2)))

    def test_hold_excludes_other_threads(self) -> None:
        registry = MemberLockRegistry()
        acquired = threading.Event()

        def contender():
            with registry.hold("c", 1):
                acquired.set()

        with registry.hold("c", 1):
            worker = threading.Thread(target=contender)
            worker.start()
            self.assertFalse(acquired.wait(0.1))
        worker.join(1)
        self.assertTrue(acquired.is_set())


if __name__ == "__main__":
    unittest.main()
