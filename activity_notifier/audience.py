import logging
from typing import Dict, List

from .exceptions import MissingLocationError, MissingSportError
from .schemas import Activity, Profile
from .store import ActivityStore

logger = logging.getLogger(__name__)


def validate_activity(activity: Activity) -> None:
    """
    Check the activity carries what audience resolution needs.

    Raises:
        MissingLocationError: Neither region_id nor comuna_id is set
        MissingSportError: sport_id is not set
    """
    if not activity.region_id and not activity.comuna_id:
        logger.warning(f"Activity {activity.id} has no region_id/comuna_id, not notifying")
        raise MissingLocationError(activity.id)
    if not activity.sport_id:
        logger.warning(f"Activity {activity.id} has no sport_id, cannot filter by sport")
        raise MissingSportError(activity.id)


def wants_activity(profile: Profile, activity: Activity) -> bool:
    # Never notify the creator of their own activity
    if activity.creator_id and profile.id == activity.creator_id:
        return False
    # Strict opt-in by sport
    if not profile.preferred_sport_ids:
        return False
    return activity.sport_id in profile.preferred_sport_ids


def resolve_audience(activity: Activity, store: ActivityStore) -> List[Profile]:
    """
    Resolve the profiles that should hear about a new activity.

    Candidates come from location preferences (comuna first, region only
    when the activity has no comuna), are narrowed to profiles with
    new-activity notifications on, then filtered by creator and preferred
    sport.

    Args:
        activity: The activity being announced
        store: Store to query

    Returns:
        Profiles unique by id, in query order. Empty when nobody matches.
    """
    validate_activity(activity)

    user_ids = store.find_user_ids_by_location(
        comuna_id=activity.comuna_id or None,
        region_id=None if activity.comuna_id else activity.region_id,
    )
    logger.info(f"Location preferences matched {len(user_ids)} rows for activity {activity.id}")
    if not user_ids:
        logger.info(f"No users prefer region={activity.region_id} comuna={activity.comuna_id}")
        return []

    profiles = store.find_notifiable_profiles(user_ids)
    logger.info(f"Profiles with new-activity notifications on: {len(profiles)}")

    unique: Dict[str, Profile] = {}
    for profile in profiles:
        if wants_activity(profile, activity):
            unique.setdefault(profile.id, profile)

    logger.info(f"Audience for activity {activity.id}: {len(unique)} profiles")
    return list(unique.values())
