"""Tests for leaderboard rankings and badges."""

from callaudit.services.leaderboard_service import (
    active_auditors,
    derive_badges,
    excellence_awards,
    leaderboard,
    top_performers,
)


def scheduled_property():
    return {"propertyIdentifier": "Tower A", "siteVisitScheduled": {"status": "Scheduled"}}


class TestRankings:

    def test_top_performers_by_mean_without_floor(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", score=6),
            make_entry(2, agent="a@x.com", score=8),
            make_entry(3, agent="b@x.com", score=9),
        ]
        ranked = top_performers(entries)
        assert [p.agent_email for p in ranked] == ["b@x.com", "a@x.com"]
        assert ranked[1].avg_score == 7.0
        assert ranked[1].audit_count == 2

    def test_ties_keep_insertion_order(self, make_entry):
        entries = [
            make_entry(1, agent="z@x.com", score=7),
            make_entry(2, agent="a@x.com", score=7),
        ]
        assert [p.agent_email for p in top_performers(entries)] == ["z@x.com", "a@x.com"]

    def test_size_limit(self, make_entry):
        entries = [make_entry(i, agent=f"agent{i}@x.com", score=i % 10) for i in range(15)]
        assert len(top_performers(entries, size=10)) == 10

    def test_excellence_awards_count_nominations(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", nominated=True),
            make_entry(2, agent="b@x.com", nominated=True),
            make_entry(3, agent="b@x.com", nominated=True),
            make_entry(4, agent="c@x.com", nominated=False),
        ]
        awards = excellence_awards(entries)
        assert [(a.agent_email, a.nominations) for a in awards] == [("b@x.com", 2), ("a@x.com", 1)]

    def test_active_auditors(self, make_entry):
        entries = [
            make_entry(1, auditor="x@x.com"),
            make_entry(2, auditor="y@x.com"),
            make_entry(3, auditor="y@x.com"),
        ]
        assert [a.auditor_email for a in active_auditors(entries)] == ["y@x.com", "x@x.com"]

    def test_empty_leaderboard(self):
        board = leaderboard([])
        assert board.top_performers == []
        assert board.excellence_awards == []
        assert board.active_auditors == []
        assert board.badges.top_performer is None
        assert board.badges.marathon_auditor is None


class TestBadges:

    def test_top_performer_needs_five_audits(self, make_entry):
        entries = [make_entry(1, agent="star@x.com", score=10)]
        entries += [make_entry(i, agent="steady@x.com", score=7) for i in range(2, 7)]
        badges = derive_badges(entries)
        # star@x.com leads the table but only steady@x.com qualifies for the badge
        assert top_performers(entries)[0].agent_email == "star@x.com"
        assert badges.top_performer == "steady@x.com"

    def test_no_top_performer_below_floor(self, make_entry):
        entries = [make_entry(i, agent="a@x.com", score=9) for i in range(4)]
        assert derive_badges(entries).top_performer is None

    def test_closer(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", properties=[scheduled_property()]),
            make_entry(2, agent="b@x.com", properties=[scheduled_property()]),
            make_entry(3, agent="b@x.com", properties=[scheduled_property()]),
            make_entry(4, agent="c@x.com"),
        ]
        assert derive_badges(entries).closer == "b@x.com"

    def test_no_closer_without_scheduled_visits(self, make_entry):
        assert derive_badges([make_entry(1)]).closer is None

    def test_rapport_master(self, make_entry):
        entries = [make_entry(i, agent="warm@x.com", detailed={"Greeting & Opening": 9}) for i in range(5)]
        entries += [make_entry(i, agent="cool@x.com", detailed={"Greeting & Opening": 8}) for i in range(5, 10)]
        assert derive_badges(entries).rapport_master == "warm@x.com"

    def test_rapport_master_minimum_average(self, make_entry):
        entries = [make_entry(i, agent="a@x.com", detailed={"Greeting & Opening": 8}) for i in range(5)]
        assert derive_badges(entries).rapport_master is None

    def test_missing_opening_score_counts_as_zero(self, make_entry):
        entries = [make_entry(i, agent="a@x.com", detailed={"Greeting & Opening": 10}) for i in range(4)]
        entries.append(make_entry(4, agent="a@x.com"))
        # (4 * 10 + 0) / 5 = 8.0
        assert derive_badges(entries).rapport_master is None

    def test_marathon_auditor(self, make_entry):
        entries = [
            make_entry(1, auditor="x@x.com"),
            make_entry(2, auditor="y@x.com"),
            make_entry(3, auditor="y@x.com"),
        ]
        assert derive_badges(entries).marathon_auditor == "y@x.com"
