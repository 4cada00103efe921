from datetime import date, timedelta
import logging

from teelottery.config import configure_logging
from teelottery.context import ClubContext
from teelottery.db.engine import get_sessionmaker, make_engine
from teelottery.lottery.windows import format_minutes, parse_time_to_minutes
from teelottery.models import (
    Base,
    ConfigType,
    Member,
    MemberFairnessScore,
    MemberSpeedProfile,
    SpeedTier,
    Teesheet,
    TeesheetConfig,
    TimeBlock,
    TimeWindow,
)
from teelottery.workflows import submit_lottery_entry, submit_lottery_group

logger = logging.getLogger("seed_dev")

CLUB_ID = "demo-club"
MEMBER_CLASSES = ("REGULAR", "REGULAR", "SENIOR", "JUNIOR")


def main() -> None:
    """Seed the development database with a club, a teesheet and lottery entries."""
    configure_logging()
    engine = make_engine()

    # SQLite struggles with cyclic foreign-key dependencies during DROP, so
    # temporarily disable foreign key checks to ensure a clean reset.
    with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)
    lottery_day = date.today() + timedelta(days=2)
    context = ClubContext.admin(CLUB_ID, actor_id="seed")

    with Session.begin() as session:
        regular = TeesheetConfig(
            club_id=CLUB_ID,
            name="Weekday",
            config_type=ConfigType.REGULAR,
            start_time="06:00",
            end_time="18:00",
            interval_minutes=10,
            max_members_per_block=4,
        )
        custom = TeesheetConfig(
            club_id=CLUB_ID,
            name="Shotgun event",
            config_type=ConfigType.CUSTOM,
            interval_minutes=0,
            max_members_per_block=4,
        )
        session.add_all([regular, custom])
        session.flush()

        teesheet = Teesheet(club_id=CLUB_ID, play_date=lottery_day, config_id=regular.id)
        start = parse_time_to_minutes(regular.start_time)
        end = parse_time_to_minutes(regular.end_time)
        for minutes in range(start, end, regular.interval_minutes):
            teesheet.time_blocks.append(
                TimeBlock(
                    club_id=CLUB_ID,
                    start_time=format_minutes(minutes),
                    end_time=format_minutes(minutes + regular.interval_minutes),
                    max_members=regular.max_members_per_block,
                )
            )
        session.add(teesheet)
        session.add(
            Teesheet(club_id=CLUB_ID, play_date=lottery_day + timedelta(days=1), config_id=custom.id)
        )

        members = [
            Member(
                club_id=CLUB_ID,
                member_number=f"M{n:04d}",
                first_name=f"Player{n}",
                last_name="Demo",
                member_class=MEMBER_CLASSES[n % len(MEMBER_CLASSES)],
            )
            for n in range(1, 25)
        ]
        session.add_all(members)
        session.flush()

        tiers = (SpeedTier.FAST, SpeedTier.AVERAGE, SpeedTier.SLOW)
        for index, member in enumerate(members):
            session.add(
                MemberSpeedProfile(
                    member_id=member.id,
                    club_id=CLUB_ID,
                    average_minutes=230.0 + 5 * (index % 4),
                    observation_count=index % 5,
                    speed_tier=tiers[index % 3],
                    admin_priority_adjustment=(index % 5) - 2,
                )
            )
            score = MemberFairnessScore(member_id=member.id, club_id=CLUB_ID)
            score.fairness_score = index % 4
            session.add(score)
        session.flush()

        windows = list(TimeWindow)
        for index, member in enumerate(members[:12]):
            submit_lottery_entry(
                session,
                context,
                member.id,
                lottery_day,
                windows[index % 4],
                alternate_window=windows[(index + 1) % 4],
            )
        for offset in range(12, 24, 4):
            leader, *others = members[offset : offset + 4]
            submit_lottery_group(
                session,
                context,
                leader.id,
                lottery_day,
                [m.id for m in others],
                TimeWindow.MORNING,
                alternate_window=TimeWindow.MIDDAY,
            )

    logger.info(
        "Seeded club %s: 24 members, 12 entries and 3 groups for %s", CLUB_ID, lottery_day
    )


if __name__ == "__main__":
    main()
