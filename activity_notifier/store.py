import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .exceptions import StoreError
from .models import ActivityRow, AlertRow, LocationPreferenceRow, ProfileRow, SportRow
from .schemas import Activity, AlertRecord, Profile

logger = logging.getLogger(__name__)


class ActivityStore:
    """
    Read access to activities, sports, location preferences and profiles,
    and insert-only access to alerts.

    Every method opens its own short-lived session and is blocking; async
    callers run it through `asyncio.to_thread`. Driver errors are re-raised
    as `StoreError`.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        try:
            with self.session_factory() as db:
                row = db.get(ActivityRow, str(activity_id))
                return Activity.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error loading activity {activity_id}: {str(e)}")
            raise StoreError(f"Error loading activity {activity_id}") from e

    def get_sport_name(self, sport_id: str) -> Optional[str]:
        try:
            with self.session_factory() as db:
                return db.scalar(select(SportRow.name).where(SportRow.id == sport_id))
        except SQLAlchemyError as e:
            raise StoreError(f"Error loading sport {sport_id}") from e

    def find_user_ids_by_location(self,
                                  comuna_id: Optional[int] = None,
                                  region_id: Optional[int] = None) -> List[str]:
        """
        User ids with a preferred location matching the activity.

        Comuna takes precedence: when `comuna_id` is given the region is not
        consulted at all.
        """
        query = select(LocationPreferenceRow.user_id)
        if comuna_id is not None:
            query = query.where(LocationPreferenceRow.comuna_id == comuna_id)
        elif region_id is not None:
            query = query.where(LocationPreferenceRow.region_id == region_id)
        else:
            return []

        try:
            with self.session_factory() as db:
                return list(db.scalars(query))
        except SQLAlchemyError as e:
            logger.error(f"Error querying location preferences: {str(e)}")
            raise StoreError("Error querying location preferences") from e

    def find_notifiable_profiles(self, user_ids: Iterable[str]) -> List[Profile]:
        """Profiles among `user_ids` that opted in to new-activity notifications"""
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            return []
        query = (
            select(ProfileRow)
            .where(ProfileRow.id.in_(user_ids))
            .where(ProfileRow.notify_new_activity.is_(True))
        )
        try:
            with self.session_factory() as db:
                return [Profile.model_validate(row) for row in db.scalars(query)]
        except SQLAlchemyError as e:
            logger.error(f"Error querying profiles: {str(e)}")
            raise StoreError("Error querying profiles") from e

    def find_alerted_user_ids(self, activity_id: str, user_ids: Iterable[str]) -> Set[str]:
        user_ids = list(user_ids)
        if not user_ids:
            return set()
        query = (
            select(AlertRow.user_id)
            .where(AlertRow.activity_id == str(activity_id))
            .where(AlertRow.user_id.in_(user_ids))
        )
        try:
            with self.session_factory() as db:
                return set(db.scalars(query))
        except SQLAlchemyError as e:
            raise StoreError(f"Error querying existing alerts for activity {activity_id}") from e

    def insert_alerts(self, alerts: List[AlertRecord]) -> int:
        """
        Batch insert alert rows, skipping pairs that already exist.

        Returns:
            Number of rows actually written, excluding skipped duplicates
        """
        if not alerts:
            return 0
        rows = [alert.model_dump() for alert in alerts]
        try:
            with self.session_factory() as db:
                dialect_name = db.get_bind().dialect.name
                stmt = self._insert_ignoring_duplicates(dialect_name)
                if dialect_name in ("postgresql", "sqlite"):
                    # RETURNING yields only the rows that survived the conflict clause
                    result = db.execute(stmt.returning(stmt.table.c.user_id), rows)
                    created = len(result.all())
                else:
                    created = db.execute(stmt, rows).rowcount
                db.commit()
            return created
        except SQLAlchemyError as e:
            raise StoreError(f"Error inserting {len(rows)} alerts") from e

    @staticmethod
    def _insert_ignoring_duplicates(dialect_name: str):
        table = AlertRow.__table__
        if dialect_name == "postgresql":
            return postgresql.insert(table).on_conflict_do_nothing(
                index_elements=["user_id", "activity_id"]
            )
        if dialect_name == "sqlite":
            return sqlite.insert(table).on_conflict_do_nothing(
                index_elements=["user_id", "activity_id"]
            )
        # Other dialects rely on the unique constraint to reject duplicates
        return insert(table)
