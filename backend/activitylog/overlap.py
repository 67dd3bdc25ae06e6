from __future__ import annotations

from typing import Any, List, Optional

import structlog

from .errors import ValidationError
from .models import ACTIVITY_STATE_SUBMITTED, Activity
from .repository import ActivityRepository
from .timeutils import TimeInterval, parse_date, parse_time_of_day

logger = structlog.get_logger(__name__)


def find_conflicts(
    repo: ActivityRepository,
    user_id: str,
    day: Any,
    candidate_start: str,
    candidate_end: str,
    exclude_activity_id: Optional[str] = None,
) -> List[Activity]:
    """Activities of ``user_id`` on ``day`` whose interval collides with the candidate.

    Submitted activities are finalized history and never block a slot.
    """
    candidate = TimeInterval(parse_time_of_day(candidate_start), parse_time_of_day(candidate_end))
    target_day = parse_date(day)
    existing = repo.find_activities(
        user_id,
        target_day,
        exclude_states=[ACTIVITY_STATE_SUBMITTED],
        exclude_id=exclude_activity_id,
    )
    conflicts: List[Activity] = []
    for activity in existing:
        try:
            interval = TimeInterval(parse_time_of_day(activity.start_time), parse_time_of_day(activity.end_time))
        except ValidationError:
            logger.warning("activity_time_unparseable", activity_id=activity.id)
            continue
        if interval.conflicts_with(candidate):
            conflicts.append(activity)
    return conflicts


def has_overlap(
    repo: ActivityRepository,
    user_id: str,
    day: Any,
    candidate_start: str,
    candidate_end: str,
    exclude_activity_id: Optional[str] = None,
) -> bool:
    conflicts = find_conflicts(repo, user_id, day, candidate_start, candidate_end, exclude_activity_id)
    if conflicts:
        logger.info(
            "schedule_overlap_detected",
            user_id=user_id,
            day=str(day),
            candidate_start=candidate_start,
            candidate_end=candidate_end,
            conflicting_ids=[activity.id for activity in conflicts],
        )
        return True
    return False
