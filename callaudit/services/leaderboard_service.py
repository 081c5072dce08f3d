"""
Leaderboard rankings and achievement badges.

Rankings are stable: agents tied on a metric keep the order in which they
first appear in the input.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from callaudit.config import settings
from callaudit.schemas.audit_schemas import AuditEntry


@dataclass
class TopPerformer:
    agent_email: str
    avg_score: float
    audit_count: int


@dataclass
class ExcellenceAward:
    agent_email: str
    nominations: int


@dataclass
class ActiveAuditor:
    auditor_email: str
    audit_count: int


@dataclass
class Badges:
    top_performer: Optional[str] = None
    closer: Optional[str] = None
    rapport_master: Optional[str] = None
    marathon_auditor: Optional[str] = None


@dataclass
class Leaderboard:
    top_performers: List[TopPerformer]
    excellence_awards: List[ExcellenceAward]
    active_auditors: List[ActiveAuditor]
    badges: Badges


def _group_by_agent(entries: Sequence[AuditEntry]) -> Dict[str, List[AuditEntry]]:
    grouped: Dict[str, List[AuditEntry]] = {}
    for entry in entries:
        grouped.setdefault(entry.agent_email, []).append(entry)
    return grouped


def _mean_overall(audits: Sequence[AuditEntry]) -> float:
    return sum(e.overall_score for e in audits) / len(audits)


def top_performers(entries: Sequence[AuditEntry], size: Optional[int] = None) -> List[TopPerformer]:
    """Agents by mean overall score. No minimum audit count applies here."""
    size = settings.leaderboard_size if size is None else size
    ranked = [
        TopPerformer(agent, _mean_overall(audits), len(audits))
        for agent, audits in _group_by_agent(entries).items()
    ]
    ranked.sort(key=lambda p: p.avg_score, reverse=True)
    return ranked[:size]


def excellence_awards(entries: Sequence[AuditEntry], size: Optional[int] = None) -> List[ExcellenceAward]:
    size = settings.leaderboard_size if size is None else size
    awards = [
        ExcellenceAward(agent, sum(1 for e in audits if e.is_nominated))
        for agent, audits in _group_by_agent(entries).items()
    ]
    awards = [a for a in awards if a.nominations > 0]
    awards.sort(key=lambda a: a.nominations, reverse=True)
    return awards[:size]


def active_auditors(entries: Sequence[AuditEntry], size: Optional[int] = None) -> List[ActiveAuditor]:
    size = settings.leaderboard_size if size is None else size
    counts: Dict[str, int] = {}
    for entry in entries:
        counts[entry.auditor_name] = counts.get(entry.auditor_name, 0) + 1
    ranked = [ActiveAuditor(auditor, count) for auditor, count in counts.items()]
    ranked.sort(key=lambda a: a.audit_count, reverse=True)
    return ranked[:size]


def _scheduled_visit(entry: AuditEntry) -> bool:
    status = settings.site_visit_scheduled_status
    return any(p.site_visit_scheduled.status == status for p in entry.analysis.properties_discussed)


def derive_badges(entries: Sequence[AuditEntry], min_audits: Optional[int] = None) -> Badges:
    """
    Resolve each badge to a single holder, or None when nobody qualifies.

    - top_performer: highest mean overall score among agents with at least
      ``min_audits`` audits
    - closer: most calls with a scheduled site visit (at least one)
    - rapport_master: highest mean opening score among agents with at least
      ``min_audits`` audits, and no lower than the configured minimum
    - marathon_auditor: auditor with the most audits
    """
    min_audits = settings.badge_min_audits if min_audits is None else min_audits
    grouped = _group_by_agent(entries)
    eligible = {agent: audits for agent, audits in grouped.items() if len(audits) >= min_audits}

    badges = Badges()

    if eligible:
        badges.top_performer = max(eligible, key=lambda agent: _mean_overall(eligible[agent]))

    closer_counts = {agent: sum(1 for e in audits if _scheduled_visit(e)) for agent, audits in grouped.items()}
    if closer_counts:
        closer = max(closer_counts, key=closer_counts.get)
        if closer_counts[closer] > 0:
            badges.closer = closer

    rapport = {}
    for agent, audits in eligible.items():
        # Calls that never scored the opening count as 0
        scores = [e.analysis.score_for(settings.rapport_parameter) or 0 for e in audits]
        average = sum(scores) / len(scores)
        if average >= settings.rapport_min_average:
            rapport[agent] = average
    if rapport:
        badges.rapport_master = max(rapport, key=rapport.get)

    auditors = active_auditors(entries, size=1)
    if auditors:
        badges.marathon_auditor = auditors[0].auditor_email

    return badges


def leaderboard(entries: Sequence[AuditEntry], size: Optional[int] = None) -> Leaderboard:
    return Leaderboard(
        top_performers=top_performers(entries, size),
        excellence_awards=excellence_awards(entries, size),
        active_auditors=active_auditors(entries, size),
        badges=derive_badges(entries),
    )
