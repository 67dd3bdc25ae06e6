from __future__ import annotations

import datetime as dt
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_
from sqlalchemy.orm import Query, Session, selectinload

from .models import Activity, ActivityDocument, ActivityType, Project, User, utcnow


class ActivityRepository:
    """Persistence boundary for activities and the directory tables they reference."""

    def __init__(self, db: Session):
        self.db = db

    # -- directory lookups -------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.db.get(Project, project_id)

    def get_activity_type(self, activity_type_id: str) -> Optional[ActivityType]:
        return self.db.get(ActivityType, activity_type_id)

    def supervised_user_ids(self, supervisor_id: str) -> List[str]:
        rows = self.db.query(User.id).filter(User.supervisor_id == supervisor_id).order_by(User.id.asc()).all()
        return [row[0] for row in rows]

    def is_supervised_by(self, user_id: str, supervisor_id: str) -> bool:
        return (
            self.db.query(User.id)
            .filter(User.id == user_id, User.supervisor_id == supervisor_id)
            .first()
            is not None
        )

    # -- activity reads ----------------------------------------------------

    def _activities(self) -> Query:
        return self.db.query(Activity).options(
            selectinload(Activity.user),
            selectinload(Activity.project),
            selectinload(Activity.activity_type),
        )

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        return self._activities().filter(Activity.id == activity_id).one_or_none()

    def get_activities(self, activity_ids: Sequence[str]) -> List[Activity]:
        if not activity_ids:
            return []
        return self._activities().filter(Activity.id.in_(list(activity_ids))).all()

    def find_activities(
        self,
        user_id: str,
        day: dt.date,
        exclude_states: Iterable[str] = (),
        exclude_id: Optional[str] = None,
    ) -> List[Activity]:
        query = self.db.query(Activity).filter(Activity.user_id == user_id, Activity.date == day)
        excluded = list(exclude_states)
        if excluded:
            query = query.filter(Activity.state.notin_(excluded))
        if exclude_id is not None:
            query = query.filter(Activity.id != exclude_id)
        return query.order_by(Activity.start_time.asc()).all()

    def find_activities_for_user(
        self,
        user_id: str,
        day: Optional[dt.date] = None,
        state: Optional[str] = None,
    ) -> List[Activity]:
        query = self._activities().filter(Activity.user_id == user_id)
        if day is not None:
            query = query.filter(Activity.date == day)
        if state:
            query = query.filter(Activity.state == state)
        return query.order_by(Activity.date.desc(), Activity.start_time.asc()).all()

    def find_activities_in_range(
        self,
        user_ids: Sequence[str],
        date_from: Optional[dt.date],
        date_to: Optional[dt.date],
        states: Iterable[str] = (),
        project_id: Optional[str] = None,
    ) -> List[Activity]:
        if not user_ids:
            return []
        query = self._activities().filter(Activity.user_id.in_(list(user_ids)))
        if date_from is not None:
            query = query.filter(Activity.date >= date_from)
        if date_to is not None:
            query = query.filter(Activity.date <= date_to)
        wanted = list(states)
        if wanted:
            query = query.filter(Activity.state.in_(wanted))
        if project_id:
            query = query.filter(Activity.project_id == project_id)
        return query.order_by(Activity.date.asc(), Activity.start_time.asc(), Activity.id.asc()).all()

    def find_activities_for_project(
        self,
        project_id: str,
        user_ids: Optional[Sequence[str]] = None,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
        states: Iterable[str] = (),
    ) -> List[Activity]:
        query = self._activities().filter(Activity.project_id == project_id)
        if user_ids:
            query = query.filter(Activity.user_id.in_(list(user_ids)))
        if date_from is not None and date_to is not None:
            query = query.filter(and_(Activity.date >= date_from, Activity.date <= date_to))
        elif date_from is not None:
            query = query.filter(Activity.date >= date_from)
        elif date_to is not None:
            query = query.filter(Activity.date <= date_to)
        wanted = list(states)
        if wanted:
            query = query.filter(Activity.state.in_(wanted))
        return query.order_by(Activity.date.desc(), Activity.start_time.asc(), Activity.id.asc()).all()

    # -- writes ------------------------------------------------------------

    def add_activity(self, activity: Activity) -> Activity:
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        return activity

    def save(self, activity: Activity) -> Activity:
        activity.updated_at = utcnow()
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        return activity

    def set_state(self, activities: Sequence[Activity], state: str) -> List[Activity]:
        now = utcnow()
        for activity in activities:
            activity.state = state
            activity.updated_at = now
            self.db.add(activity)
        self.db.commit()
        for activity in activities:
            self.db.refresh(activity)
        return list(activities)

    def delete_activity(self, activity: Activity) -> None:
        self.db.delete(activity)
        self.db.commit()

    def add_document(
        self,
        activity: Activity,
        original_name: str,
        stored_path: str,
        content_type: Optional[str],
        size_bytes: int,
    ) -> ActivityDocument:
        document = ActivityDocument(
            activity=activity,
            original_name=original_name,
            stored_path=stored_path,
            content_type=content_type,
            size_bytes=size_bytes,
        )
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document
