import logging
from typing import List, Optional

from .exceptions import StoreError
from .schemas import Activity, AlertRecord, Profile
from .store import ActivityStore

logger = logging.getLogger(__name__)


class AlertLedger:
    """
    Records which users were alerted about which activity, so a repeated
    trigger does not write duplicate alerts.
    """

    def __init__(self, store: ActivityStore, lookup_fatal: bool = True):
        """
        Args:
            store: Store holding the alerts table
            lookup_fatal: Whether a failed lookup of existing alerts aborts the
                request. When False the failure is logged and every candidate
                is treated as not yet alerted.
        """
        self.store = store
        self.lookup_fatal = lookup_fatal

    def filter_unalerted(self, candidates: List[Profile], activity_id: str) -> List[Profile]:
        """Return the candidates that have no alert for this activity yet"""
        if not candidates:
            return []
        try:
            alerted = self.store.find_alerted_user_ids(activity_id, [p.id for p in candidates])
        except StoreError as e:
            if self.lookup_fatal:
                raise
            logger.error(f"Error querying existing alerts, assuming none: {str(e)}")
            alerted = set()

        unalerted = [p for p in candidates if p.id not in alerted]
        logger.info(f"Profiles without a previous alert for activity {activity_id}: {len(unalerted)}")
        return unalerted

    def record_alerts(self,
                      new_profiles: List[Profile],
                      activity: Activity,
                      sport_name: Optional[str]) -> int:
        """
        Insert one alert per profile with the activity's display fields.

        Failures are logged and reported as zero alerts; they never block
        delivery.

        Returns:
            Number of alerts written
        """
        if not new_profiles:
            logger.info(f"All candidates already had an alert for activity {activity.id}")
            return 0

        alerts = [
            AlertRecord(
                user_id=profile.id,
                activity_id=activity.id,
                activity_title=activity.title or "",
                activity_date=activity.date,
                place_name=activity.place_name,
                formatted_address=activity.formatted_address,
                sport_name=sport_name,
            )
            for profile in new_profiles
        ]
        try:
            created = self.store.insert_alerts(alerts)
        except StoreError as e:
            logger.error(f"Error inserting alerts for activity {activity.id}: {str(e)}")
            return 0

        logger.info(f"Inserted {created} new alerts for activity {activity.id}")
        return created

    def lookup_sport_name(self, sport_id: str) -> Optional[str]:
        try:
            return self.store.get_sport_name(sport_id)
        except StoreError as e:
            logger.error(f"Error loading sport name for {sport_id}: {str(e)}")
            return None
