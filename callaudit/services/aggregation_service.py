"""
Aggregation engine: statistics derived from a collection of audit entries.

Everything here is a pure function of its arguments. Inputs are never
mutated, and time-relative results take ``now`` explicitly so the same
input always yields the same output.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from callaudit.config import settings
from callaudit.schemas.audit_schemas import AuditEntry, to_local_naive

OVERALL_SCORE = "Overall Score"


class TimePeriod(str, Enum):
    ALL = "all"
    MONTH_TO_DATE = "mtd"
    TODAY = "today"


# ============== RESULT TYPES ==============


@dataclass
class AgentPerformance:
    email: str
    audit_count: int
    avg_score: Optional[float]               # None = no data
    top_problem: Optional[Tuple[str, int]]   # (parameter, low-score count)

    @property
    def has_data(self) -> bool:
        return self.audit_count > 0


@dataclass
class AuditorPerformance:
    email: str
    audit_count: int
    avg_analysis_time: Optional[float]


@dataclass
class ParameterAverage:
    parameter: str
    average: float


@dataclass
class CoachingAlert:
    id: str
    agent_email: str
    parameter: str
    avg_score: float


@dataclass
class ComplianceAlert:
    id: str
    entry_id: int
    agent_email: str
    auditor_name: str
    timestamp: str
    reschedule_red_flag: bool
    virtual_visit_offered: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class DashboardStats:
    period: TimePeriod
    total_audits: int
    avg_score: Optional[float]
    total_analysis_time: int
    agent_performance: List[AgentPerformance]
    auditor_performance: List[AuditorPerformance]
    team_parameter_performance: List[ParameterAverage]  # weakest first
    coaching_alerts: List[CoachingAlert]
    compliance_alerts: List[ComplianceAlert]


@dataclass
class TrendPoint:
    id: int
    timestamp: str
    score: int


@dataclass
class AgentTrend:
    agent_email: str
    parameter: str
    total_audits: int
    avg_score: Optional[float]
    team_avg_score: Optional[float]
    parameter_avg: Optional[float]
    team_parameter_avg: Optional[float]
    problem_parameters: List[Tuple[str, int]]
    parameter_averages: Dict[str, float]
    last_audit: Optional[str]
    available_parameters: List[str]
    points: List[TrendPoint]


# ============== ORDERING & FILTERING ==============


def sort_by_timestamp_desc(entries: Iterable[AuditEntry]) -> List[AuditEntry]:
    return sorted(entries, key=lambda e: e.created_at, reverse=True)


def period_start(period: TimePeriod, now: datetime) -> Optional[datetime]:
    """Start of the window: local midnight for today, the 1st for month-to-date."""
    period = TimePeriod(period)
    if period == TimePeriod.TODAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == TimePeriod.MONTH_TO_DATE:
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return None


def filter_by_period(
    entries: Sequence[AuditEntry],
    period: TimePeriod = TimePeriod.ALL,
    now: Optional[datetime] = None,
) -> List[AuditEntry]:
    """Entries whose timestamp lies in [start of period, now]."""
    now = to_local_naive(now) if now else datetime.now()
    start = period_start(period, now)
    if start is None:
        return list(entries)
    return [e for e in entries if start <= e.created_at <= now]


def filter_by_auditor(entries: Sequence[AuditEntry], auditor: Optional[str]) -> List[AuditEntry]:
    """The "mine" view; no auditor means everything."""
    if not auditor:
        return list(entries)
    return [e for e in entries if e.auditor_name == auditor]


def filter_by_agent(entries: Sequence[AuditEntry], agent: str) -> List[AuditEntry]:
    return [e for e in entries if e.agent_email == agent]


# ============== AVERAGES ==============


def _mean(total: float, count: int) -> Optional[float]:
    return total / count if count else None


def team_parameter_averages(entries: Sequence[AuditEntry]) -> Dict[str, float]:
    """Mean score per detailed parameter. Parameters never scored are absent."""
    totals: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    for entry in entries:
        for item in entry.analysis.detailed_scores:
            totals[item.parameter] = totals.get(item.parameter, 0) + item.score
            counts[item.parameter] = counts.get(item.parameter, 0) + 1
    return {name: totals[name] / counts[name] for name in totals}


def average_overall_score(entries: Sequence[AuditEntry]) -> Optional[float]:
    return _mean(sum(e.overall_score for e in entries), len(entries))


def most_frequent_low_parameter(
    entries: Sequence[AuditEntry],
    threshold: Optional[int] = None,
) -> Optional[Tuple[str, int]]:
    """
    Parameter scored at or below ``threshold`` most often.

    Ties go to the parameter encountered first.
    """
    ranked = low_score_counts(entries, threshold)
    return ranked[0] if ranked else None


def low_score_counts(
    entries: Sequence[AuditEntry],
    threshold: Optional[int] = None,
) -> List[Tuple[str, int]]:
    """(parameter, count) of low scores, most frequent first, stable on ties."""
    threshold = settings.low_score_threshold if threshold is None else threshold
    counts: Counter = Counter()
    for entry in entries:
        for item in entry.analysis.detailed_scores:
            if item.score <= threshold:
                counts[item.parameter] += 1
    # Counter preserves first-insertion order; sorted() is stable
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)


def agent_performance(
    entries: Sequence[AuditEntry],
    agents: Optional[Sequence[str]] = None,
    low_score_threshold: Optional[int] = None,
) -> List[AgentPerformance]:
    """
    Per-agent audit count, mean overall score and top low-scoring parameter.

    ``agents`` is an allowlist; entries for other agents are ignored. When
    omitted, every agent appearing in ``entries`` is reported. Agents with
    no audits report ``avg_score=None``. Sorted by audit count, descending.
    """
    if agents is None:
        agents = list(dict.fromkeys(e.agent_email for e in entries))

    grouped: Dict[str, List[AuditEntry]] = {agent: [] for agent in agents}
    for entry in entries:
        if entry.agent_email in grouped:
            grouped[entry.agent_email].append(entry)

    performance = [
        AgentPerformance(
            email=agent,
            audit_count=len(audits),
            avg_score=average_overall_score(audits),
            top_problem=most_frequent_low_parameter(audits, low_score_threshold),
        )
        for agent, audits in grouped.items()
    ]
    return sorted(performance, key=lambda p: p.audit_count, reverse=True)


def auditor_performance(
    entries: Sequence[AuditEntry],
    auditors: Optional[Sequence[str]] = None,
) -> List[AuditorPerformance]:
    if auditors is None:
        auditors = list(dict.fromkeys(e.auditor_name for e in entries))

    counts: Dict[str, int] = {auditor: 0 for auditor in auditors}
    analysis_time: Dict[str, int] = {auditor: 0 for auditor in auditors}
    for entry in entries:
        if entry.auditor_name in counts:
            counts[entry.auditor_name] += 1
            analysis_time[entry.auditor_name] += entry.analysis.analysis_duration

    performance = [
        AuditorPerformance(
            email=auditor,
            audit_count=counts[auditor],
            avg_analysis_time=_mean(analysis_time[auditor], counts[auditor]),
        )
        for auditor in counts
    ]
    return sorted(performance, key=lambda p: p.audit_count, reverse=True)


# ============== ALERTS ==============


def coaching_alert_id(agent_email: str, parameter: str) -> str:
    return f"{agent_email}-{parameter}"


def compliance_alert_id(entry_id: int) -> str:
    return f"compliance-{entry_id}"


def coaching_alerts(
    performance: Sequence[AgentPerformance],
    min_audits: Optional[int] = None,
    min_low_scores: Optional[int] = None,
) -> List[CoachingAlert]:
    """Agents with enough audits whose top problem recurs often enough."""
    min_audits = settings.coaching_min_audits if min_audits is None else min_audits
    min_low_scores = settings.coaching_min_low_scores if min_low_scores is None else min_low_scores

    alerts = []
    for agent in performance:
        if agent.audit_count < min_audits or agent.top_problem is None:
            continue
        parameter, occurrences = agent.top_problem
        if occurrences < min_low_scores:
            continue
        alerts.append(
            CoachingAlert(
                id=coaching_alert_id(agent.email, parameter),
                agent_email=agent.email,
                parameter=parameter,
                avg_score=agent.avg_score,
            )
        )
    return alerts


def compliance_alerts(
    entries: Sequence[AuditEntry],
    limit: Optional[int] = None,
) -> List[ComplianceAlert]:
    """Calls with a proactive reschedule or a virtual-visit offer, newest first."""
    limit = settings.compliance_alert_limit if limit is None else limit

    alerts = []
    for entry in sort_by_timestamp_desc(entries):
        flagged = [p for p in entry.analysis.properties_discussed if p.has_compliance_issue]
        if not flagged:
            continue
        red_flag = any(p.site_visit_scheduled.reschedule_red_flag for p in flagged)
        virtual = any(p.site_visit_scheduled.virtual_visit_offered for p in flagged)
        reasons = [
            p.site_visit_scheduled.red_flag_reason
            for p in flagged
            if p.site_visit_scheduled.red_flag_reason
        ]
        alerts.append(
            ComplianceAlert(
                id=compliance_alert_id(entry.id),
                entry_id=entry.id,
                agent_email=entry.agent_email,
                auditor_name=entry.auditor_name,
                timestamp=entry.timestamp,
                reschedule_red_flag=bool(red_flag),
                virtual_visit_offered=bool(virtual),
                reasons=reasons,
            )
        )
        if len(alerts) >= limit:
            break
    return alerts


def visible_alerts(alerts, dismissed: Iterable[str]) -> list:
    """Alerts whose id has not been dismissed."""
    dismissed = set(dismissed)
    return [alert for alert in alerts if alert.id not in dismissed]


def dismiss_all(alerts, dismissed: Iterable[str]) -> Set[str]:
    """New dismissal set covering every alert currently shown."""
    return set(dismissed) | {alert.id for alert in alerts}


# ============== VIEWS ==============


def dashboard_stats(
    entries: Sequence[AuditEntry],
    agents: Optional[Sequence[str]] = None,
    auditors: Optional[Sequence[str]] = None,
    period: TimePeriod = TimePeriod.ALL,
    now: Optional[datetime] = None,
) -> DashboardStats:
    windowed = filter_by_period(entries, period, now)
    performance = agent_performance(windowed, agents)
    parameter_averages = sorted(
        (ParameterAverage(name, avg) for name, avg in team_parameter_averages(windowed).items()),
        key=lambda p: p.average,
    )
    return DashboardStats(
        period=TimePeriod(period),
        total_audits=len(windowed),
        avg_score=average_overall_score(windowed),
        total_analysis_time=sum(e.analysis.analysis_duration for e in windowed),
        agent_performance=performance,
        auditor_performance=auditor_performance(windowed, auditors),
        team_parameter_performance=parameter_averages,
        coaching_alerts=coaching_alerts(performance),
        # Compliance issues are surfaced across all time
        compliance_alerts=compliance_alerts(entries),
    )


def agent_trend(
    entries: Sequence[AuditEntry],
    agent_email: str,
    parameter: str = OVERALL_SCORE,
    limit: int = 20,
) -> AgentTrend:
    """One agent against the team, with chart points oldest to newest."""
    history = sorted(filter_by_agent(entries, agent_email), key=lambda e: e.created_at)
    team_params = team_parameter_averages(entries)
    agent_params = team_parameter_averages(history)

    if parameter == OVERALL_SCORE:
        points = [TrendPoint(e.id, e.timestamp, e.overall_score) for e in history[-limit:]]
        parameter_avg = average_overall_score(history)
        team_parameter_avg = average_overall_score(entries)
    else:
        # A call that never scored the parameter charts as 0
        points = [
            TrendPoint(e.id, e.timestamp, e.analysis.score_for(parameter) or 0)
            for e in history[-limit:]
        ]
        parameter_avg = agent_params.get(parameter)
        team_parameter_avg = team_params.get(parameter)

    available = [OVERALL_SCORE]
    for entry in entries:
        for item in entry.analysis.detailed_scores:
            if item.parameter not in available:
                available.append(item.parameter)

    return AgentTrend(
        agent_email=agent_email,
        parameter=parameter,
        total_audits=len(history),
        avg_score=average_overall_score(history),
        team_avg_score=average_overall_score(entries),
        parameter_avg=parameter_avg,
        team_parameter_avg=team_parameter_avg,
        problem_parameters=low_score_counts(history)[:5],
        parameter_averages=agent_params,
        last_audit=history[-1].timestamp if history else None,
        available_parameters=available,
        points=points,
    )


def best_practices(
    entries: Sequence[AuditEntry],
    agent: Optional[str] = None,
    keyword: str = "",
) -> List[AuditEntry]:
    """Nominated calls, optionally narrowed by agent and summary keyword."""
    keyword = keyword.strip().lower()
    result = []
    for entry in entries:
        if not entry.is_nominated:
            continue
        if agent and entry.agent_email != agent:
            continue
        if keyword and keyword not in entry.analysis.overall_score.summary.lower():
            continue
        result.append(entry)
    return result


def low_scoring_audits(
    entries: Sequence[AuditEntry],
    parameter: str,
    threshold: Optional[int] = None,
) -> List[AuditEntry]:
    """Calls scoring at or below the threshold on ``parameter`` (root-cause input)."""
    threshold = settings.low_score_threshold if threshold is None else threshold
    result = []
    for entry in entries:
        score = entry.analysis.score_for(parameter)
        if score is not None and score <= threshold:
            result.append(entry)
    return result


def call_of_the_week_candidates(
    entries: Sequence[AuditEntry],
    min_score: Optional[int] = None,
) -> List[AuditEntry]:
    min_score = settings.call_of_the_week_min_score if min_score is None else min_score
    return [e for e in entries if e.overall_score >= min_score]
