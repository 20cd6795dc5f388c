from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

import pandas as pd
from sqlalchemy.orm import Session, sessionmaker

from membership_import.db.database import SessionLocal
from membership_import.db import models
from membership_import.models.errors import RowImportError
from membership_import.models.mapping import CalculatedDates, StatusResult

def add_interval(value: date, unit: Optional[str], interval: Optional[int]) -> date:
    """
    Shifts a date by a number of days, months or years.
    Month ends are clamped: 2024-01-31 + 1 month -> 2024-02-29.
    """
    if not unit or not interval:
        return value
    if unit == "day":
        return value + timedelta(days=interval)
    if unit == "month":
        return (pd.Timestamp(value) + pd.DateOffset(months=interval)).date()
    if unit == "year":
        return (pd.Timestamp(value) + pd.DateOffset(years=interval)).date()
    raise ValueError(f"Unsupported interval unit '{unit}'")


class SqlMembershipTypeDateRules:
    """
    Fills missing membership dates from the duration and period settings
    of the membership type.
    """

    def __init__(self, session_factory: sessionmaker = None, today: Callable[[], date] = date.today):
        self.session_factory = session_factory or SessionLocal
        self.today = today

    def _get_db(self) -> Session:
        return self.session_factory()

    def _load_type(self, membership_type_id: int) -> models.MembershipType:
        db = self._get_db()
        try:
            membership_type = (
                db.query(models.MembershipType)
                .filter(models.MembershipType.id == membership_type_id)
                .first()
            )
            if not membership_type:
                raise RowImportError(f"Membership type {membership_type_id} not found")
            db.expunge(membership_type)
            return membership_type
        finally:
            db.close()

    def get_dates_for_type(
        self,
        membership_type_id: int,
        join_date: Optional[date],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> CalculatedDates:
        membership_type = self._load_type(membership_type_id)

        join_date = join_date or start_date or self.today()

        if start_date is None:
            if membership_type.period_type == "fixed" and membership_type.fixed_period_start_day:
                start_date = self._fixed_period_start(join_date, membership_type.fixed_period_start_day)
            else:
                start_date = join_date

        if end_date is None and membership_type.duration_unit != "lifetime":
            end_date = add_interval(
                start_date,
                membership_type.duration_unit,
                membership_type.duration_interval,
            ) - timedelta(days=1)

        return CalculatedDates(join_date=join_date, start_date=start_date, end_date=end_date)

    @staticmethod
    def _fixed_period_start(join_date: date, month_day: str) -> date:
        month, day = int(month_day[:-2]), int(month_day[-2:])
        anchor = date(join_date.year, month, day)
        if anchor > join_date:
            anchor = date(join_date.year - 1, month, day)
        return anchor


class SqlMembershipStatusRules:
    """
    Picks the first active status (by weight) whose date window contains
    the reference date.
    """

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def _get_db(self) -> Session:
        return self.session_factory()

    def get_status_by_date(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        join_date: Optional[date],
        as_of: date,
        exclude_admin: bool,
        membership_type_id: Optional[int],
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[StatusResult]:
        events = {"join_date": join_date, "start_date": start_date, "end_date": end_date}

        db = self._get_db()
        try:
            query = db.query(models.MembershipStatus).filter(models.MembershipStatus.is_active.is_(True))
            if exclude_admin:
                query = query.filter(models.MembershipStatus.is_admin.is_(False))
            statuses = query.order_by(models.MembershipStatus.weight, models.MembershipStatus.id).all()

            for status in statuses:
                # Statuses without events are only ever set by hand
                if not status.start_event and not status.end_event:
                    continue

                window_start = None
                if status.start_event:
                    base = events.get(status.start_event)
                    if base is None:
                        continue
                    window_start = add_interval(
                        base, status.start_event_adjust_unit, status.start_event_adjust_interval
                    )

                window_end = None
                if status.end_event:
                    base = events.get(status.end_event)
                    if base is not None:
                        window_end = add_interval(
                            base, status.end_event_adjust_unit, status.end_event_adjust_interval
                        )

                if (window_start is None or window_start <= as_of) and (window_end is None or as_of <= window_end):
                    return StatusResult(id=status.id, name=status.name, is_admin=bool(status.is_admin))
            return None
        finally:
            db.close()
