"""Tests for the aggregation engine."""

from datetime import datetime, timezone

import pytest

from callaudit.services.aggregation_service import (
    OVERALL_SCORE,
    AgentPerformance,
    TimePeriod,
    agent_performance,
    agent_trend,
    auditor_performance,
    best_practices,
    call_of_the_week_candidates,
    coaching_alerts,
    compliance_alerts,
    dashboard_stats,
    dismiss_all,
    filter_by_auditor,
    filter_by_period,
    low_scoring_audits,
    sort_by_timestamp_desc,
    team_parameter_averages,
    visible_alerts,
)

NOW = datetime(2024, 6, 15, 10, 0, 0)


def red_flag_property(reason="Agent suggested moving the visit"):
    return {
        "propertyIdentifier": "Tower A",
        "siteVisitScheduled": {"rescheduleRedFlag": True, "redFlagReason": reason},
    }


def virtual_visit_property():
    return {"propertyIdentifier": "Villa 2", "siteVisitScheduled": {"virtualVisitOffered": True}}


class TestTimeWindow:
    """Period filtering against an explicit now."""

    @pytest.fixture
    def entries(self, make_entry):
        return [
            make_entry(1, timestamp="2024-06-01T23:59:59"),
            make_entry(2, timestamp="2024-06-15T08:00:00"),
            make_entry(3, timestamp="2024-05-31T23:59:59"),
        ]

    def test_month_to_date(self, entries):
        ids = [e.id for e in filter_by_period(entries, TimePeriod.MONTH_TO_DATE, NOW)]
        assert ids == [1, 2]

    def test_today(self, entries):
        ids = [e.id for e in filter_by_period(entries, TimePeriod.TODAY, NOW)]
        assert ids == [2]

    def test_all(self, entries):
        assert len(filter_by_period(entries, TimePeriod.ALL, NOW)) == 3

    def test_future_entries_excluded(self, make_entry):
        future = make_entry(9, timestamp="2024-06-15T11:00:00")
        assert filter_by_period([future], TimePeriod.TODAY, NOW) == []

    def test_accepts_string_period(self, entries):
        assert len(filter_by_period(entries, "mtd", NOW)) == 2

    def test_inputs_not_mutated(self, entries):
        before = [e.model_copy(deep=True) for e in entries]
        filter_by_period(entries, TimePeriod.TODAY, NOW)
        sort_by_timestamp_desc(entries)
        assert entries == before

    def test_aware_now_is_compared_in_local_time(self, make_entry):
        entries = [
            make_entry(1, timestamp="2024-06-15T08:00:00Z"),
            make_entry(2, timestamp="2024-06-15T12:00:00Z"),
        ]
        now = datetime(2024, 6, 15, 10, tzinfo=timezone.utc)
        assert [e.id for e in filter_by_period(entries, TimePeriod.MONTH_TO_DATE, now)] == [1]


class TestOrderingAndViews:

    def test_sort_newest_first(self, make_entry):
        entries = [
            make_entry(1, timestamp="2024-01-01T00:00:00"),
            make_entry(2, timestamp="2024-01-03T00:00:00Z"),
            make_entry(3, timestamp="2024-01-02T00:00:00"),
        ]
        assert [e.id for e in sort_by_timestamp_desc(entries)] == [2, 3, 1]

    def test_mine_view(self, make_entry):
        entries = [make_entry(1, auditor="me@x.com"), make_entry(2, auditor="other@x.com")]
        assert [e.id for e in filter_by_auditor(entries, "me@x.com")] == [1]
        assert len(filter_by_auditor(entries, None)) == 2


class TestTeamParameterAverages:

    def test_means_without_zero_fill(self, make_entry):
        entries = [
            make_entry(1, detailed={"A": 8, "B": 4}),
            make_entry(2, detailed={"A": 6}),
        ]
        assert team_parameter_averages(entries) == {"A": 7.0, "B": 4.0}

    def test_empty(self):
        assert team_parameter_averages([]) == {}


class TestAgentPerformance:

    def test_counts_means_and_top_problem(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", score=6, detailed={"Closing": 4, "Rapport": 5}),
            make_entry(2, agent="a@x.com", score=8, detailed={"Closing": 3, "Rapport": 9}),
            make_entry(3, agent="b@x.com", score=9, detailed={"Closing": 9}),
        ]
        perf = {p.email: p for p in agent_performance(entries)}
        assert perf["a@x.com"].audit_count == 2
        assert perf["a@x.com"].avg_score == 7.0
        assert perf["a@x.com"].top_problem == ("Closing", 2)
        assert perf["b@x.com"].top_problem is None

    def test_threshold_is_inclusive(self, make_entry):
        entries = [make_entry(1, detailed={"Closing": 5})]
        assert agent_performance(entries)[0].top_problem == ("Closing", 1)
        assert agent_performance(entries, low_score_threshold=4)[0].top_problem is None

    def test_tie_goes_to_first_encountered(self, make_entry):
        entries = [make_entry(1, detailed={"Rapport": 2, "Closing": 2})]
        assert agent_performance(entries)[0].top_problem == ("Rapport", 1)

    def test_agent_without_audits_has_no_data(self, make_entry):
        entries = [make_entry(1, agent="a@x.com")]
        perf = {p.email: p for p in agent_performance(entries, agents=["a@x.com", "idle@x.com"])}
        assert perf["idle@x.com"].audit_count == 0
        assert perf["idle@x.com"].avg_score is None
        assert not perf["idle@x.com"].has_data

    def test_allowlist_ignores_unknown_agents(self, make_entry):
        entries = [make_entry(1, agent="a@x.com"), make_entry(2, agent="gone@x.com")]
        assert [p.email for p in agent_performance(entries, agents=["a@x.com"])] == ["a@x.com"]

    def test_sorted_by_audit_count_stable(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com"),
            make_entry(2, agent="b@x.com"),
            make_entry(3, agent="b@x.com"),
            make_entry(4, agent="c@x.com"),
        ]
        assert [p.email for p in agent_performance(entries)] == ["b@x.com", "a@x.com", "c@x.com"]

    def test_auditor_performance(self, make_entry):
        entries = [
            make_entry(1, auditor="x@x.com"),
            make_entry(2, auditor="x@x.com"),
        ]
        entries[0].analysis.analysis_duration = 30
        entries[1].analysis.analysis_duration = 10
        perf = auditor_performance(entries, auditors=["x@x.com", "y@x.com"])
        assert perf[0].email == "x@x.com"
        assert perf[0].avg_analysis_time == 20.0
        assert perf[1].avg_analysis_time is None


class TestCoachingAlerts:
    """Coaching alert thresholds."""

    def test_two_low_scores_across_three_audits_alerts(self):
        perf = [AgentPerformance("a@x.com", 3, 6.0, ("Closing", 2))]
        alerts = coaching_alerts(perf)
        assert len(alerts) == 1
        assert alerts[0].id == "a@x.com-Closing"
        assert alerts[0].parameter == "Closing"

    def test_single_low_score_does_not_alert(self):
        assert coaching_alerts([AgentPerformance("a@x.com", 3, 6.0, ("Closing", 1))]) == []

    def test_too_few_audits_does_not_alert(self):
        assert coaching_alerts([AgentPerformance("a@x.com", 2, 4.0, ("Closing", 2))]) == []

    def test_no_problem_does_not_alert(self):
        assert coaching_alerts([AgentPerformance("a@x.com", 10, 9.0, None)]) == []


class TestComplianceAlerts:

    def test_flags_red_flag_and_virtual_visit(self, make_entry):
        entries = [
            make_entry(1, timestamp="2024-06-01T10:00:00", properties=[red_flag_property()]),
            make_entry(2, timestamp="2024-06-02T10:00:00", properties=[virtual_visit_property()]),
            make_entry(3, timestamp="2024-06-03T10:00:00", properties=[{"propertyIdentifier": "clean"}]),
        ]
        alerts = compliance_alerts(entries)
        assert [a.id for a in alerts] == ["compliance-2", "compliance-1"]
        assert alerts[0].virtual_visit_offered is True
        assert alerts[1].reschedule_red_flag is True
        assert alerts[1].reasons == ["Agent suggested moving the visit"]

    def test_limit(self, make_entry):
        entries = [
            make_entry(i, timestamp=f"2024-06-{i:02d}T10:00:00", properties=[red_flag_property()])
            for i in range(1, 9)
        ]
        alerts = compliance_alerts(entries, limit=5)
        assert [a.entry_id for a in alerts] == [8, 7, 6, 5, 4]


class TestDismissal:
    """Alert ids are stable across recomputation."""

    def test_dismissed_alert_stays_hidden_after_recompute(self):
        perf = [
            AgentPerformance("a@x.com", 3, 6.0, ("Closing", 2)),
            AgentPerformance("b@x.com", 4, 5.0, ("Rapport", 3)),
        ]
        dismissed = {"a@x.com-Closing"}
        first = visible_alerts(coaching_alerts(perf), dismissed)
        second = visible_alerts(coaching_alerts(list(perf)), dismissed)
        assert [a.id for a in first] == ["b@x.com-Rapport"]
        assert [a.id for a in second] == ["b@x.com-Rapport"]

    def test_dismiss_all(self):
        alerts = coaching_alerts([AgentPerformance("a@x.com", 3, 6.0, ("Closing", 2))])
        dismissed = dismiss_all(alerts, ["compliance-1"])
        assert dismissed == {"compliance-1", "a@x.com-Closing"}
        assert visible_alerts(alerts, dismissed) == []


class TestDashboardStats:

    def test_period_stats(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", score=6, timestamp="2024-06-14T10:00:00", detailed={"A": 8, "B": 2}),
            make_entry(2, agent="a@x.com", score=8, timestamp="2024-06-15T09:00:00", detailed={"A": 6}),
            make_entry(3, agent="b@x.com", score=4, timestamp="2024-05-01T10:00:00",
                       properties=[red_flag_property()]),
        ]
        stats = dashboard_stats(entries, ["a@x.com", "b@x.com"], ["auditor@x.com"], TimePeriod.MONTH_TO_DATE, NOW)
        assert stats.total_audits == 2
        assert stats.avg_score == 7.0
        assert [p.parameter for p in stats.team_parameter_performance] == ["B", "A"]
        assert stats.agent_performance[0].email == "a@x.com"
        assert stats.agent_performance[1].avg_score is None
        # Compliance issues are not limited to the period
        assert [a.id for a in stats.compliance_alerts] == ["compliance-3"]

    def test_empty_history(self):
        stats = dashboard_stats([], [], [], TimePeriod.ALL, NOW)
        assert stats.total_audits == 0
        assert stats.avg_score is None
        assert stats.coaching_alerts == []


class TestAgentTrend:

    @pytest.fixture
    def entries(self, make_entry):
        return [
            make_entry(1, agent="a@x.com", score=4, timestamp="2024-06-01T10:00:00", detailed={"Closing": 3}),
            make_entry(2, agent="a@x.com", score=8, timestamp="2024-06-03T10:00:00", detailed={"Rapport": 9}),
            make_entry(3, agent="a@x.com", score=6, timestamp="2024-06-02T10:00:00", detailed={"Closing": 5}),
            make_entry(4, agent="b@x.com", score=10, timestamp="2024-06-02T10:00:00", detailed={"Closing": 9}),
        ]

    def test_overall_points_oldest_first(self, entries):
        trend = agent_trend(entries, "a@x.com")
        assert trend.parameter == OVERALL_SCORE
        assert [p.id for p in trend.points] == [1, 3, 2]
        assert trend.avg_score == 6.0
        assert trend.team_avg_score == 7.0
        assert trend.last_audit == "2024-06-03T10:00:00"

    def test_missing_parameter_charts_as_zero(self, entries):
        trend = agent_trend(entries, "a@x.com", "Closing")
        assert [p.score for p in trend.points] == [3, 5, 0]
        assert trend.parameter_avg == 4.0
        assert trend.team_parameter_avg == pytest.approx(17 / 3)

    def test_problem_parameters(self, entries):
        assert agent_trend(entries, "a@x.com").problem_parameters == [("Closing", 2)]

    def test_point_limit(self, make_entry):
        entries = [make_entry(i, timestamp=f"2024-01-{i:02d}T10:00:00") for i in range(1, 26)]
        trend = agent_trend(entries, "agent@x.com", limit=20)
        assert len(trend.points) == 20
        assert trend.points[0].id == 6

    def test_unknown_agent(self, entries):
        trend = agent_trend(entries, "nobody@x.com")
        assert trend.total_audits == 0
        assert trend.points == []
        assert trend.last_audit is None


class TestReportSelections:

    def test_best_practices(self, make_entry):
        entries = [
            make_entry(1, agent="a@x.com", nominated=True, summary="Great objection handling"),
            make_entry(2, agent="b@x.com", nominated=True, summary="Clear pitch"),
            make_entry(3, agent="a@x.com", nominated=False, summary="Great call"),
            make_entry(4, agent="a@x.com", summary="Great opening"),
        ]
        assert [e.id for e in best_practices(entries)] == [1, 2]
        assert [e.id for e in best_practices(entries, agent="b@x.com")] == [2]
        assert [e.id for e in best_practices(entries, keyword="  OBJECTION ")] == [1]

    def test_low_scoring_audits(self, make_entry):
        entries = [
            make_entry(1, detailed={"Closing": 5}),
            make_entry(2, detailed={"Closing": 6}),
            make_entry(3, detailed={"Rapport": 1}),
        ]
        assert [e.id for e in low_scoring_audits(entries, "Closing")] == [1]

    def test_call_of_the_week_candidates(self, make_entry):
        entries = [make_entry(1, score=9), make_entry(2, score=8), make_entry(3, score=10)]
        assert [e.id for e in call_of_the_week_candidates(entries)] == [1, 3]
