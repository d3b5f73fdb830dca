from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Activity(BaseModel):
    """A newly created activity, read from the store"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    date: Optional[datetime] = None
    region_id: Optional[int] = None
    comuna_id: Optional[int] = None
    sport_id: Optional[str] = None
    place_name: Optional[str] = None
    formatted_address: Optional[str] = None
    creator_id: Optional[str] = None


class Profile(BaseModel):
    """Notification-relevant slice of a user profile"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    fcm_token: Optional[str] = None
    preferred_sport_ids: Optional[List[str]] = None
    notify_new_activity: bool = False


class AlertRecord(BaseModel):
    """Alert row with the activity display fields copied at creation time"""
    user_id: str
    activity_id: str
    activity_title: str = ""
    activity_date: Optional[datetime] = None
    place_name: Optional[str] = None
    formatted_address: Optional[str] = None
    sport_name: Optional[str] = None


class TokenFailure(BaseModel):
    token: str
    reason: str


class DispatchResult(BaseModel):
    """Aggregate outcome of one push fan-out"""
    delivered: int = 0
    failed: int = 0
    failures: List[TokenFailure] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.delivered + self.failed


class NotifyRequest(BaseModel):
    """Inbound trigger body; `id` is accepted for the event-created trigger"""
    model_config = ConfigDict(extra="ignore")

    activity_id: Optional[Union[int, str]] = None
    id: Optional[Union[int, str]] = None

    def resolved_activity_id(self) -> Optional[str]:
        for value in (self.activity_id, self.id):
            if value is not None and str(value).strip():
                return str(value).strip()
        return None


class NotifyResult(BaseModel):
    delivered: int = 0
    failed: int = 0
    totalTokens: int = 0
    alertsCreatedFor: int = 0


class ErrorResponse(BaseModel):
    error: str


def build_data_payload(activity: Activity, click_action: str) -> Dict[str, str]:
    """FCM data payloads only carry string values"""
    return {
        'activityId': str(activity.id),
        'regionId': str(activity.region_id) if activity.region_id is not None else '',
        'comunaId': str(activity.comuna_id) if activity.comuna_id is not None else '',
        'sportId': activity.sport_id or '',
        'date': activity.date.isoformat() if activity.date else '',
        'click_action': click_action,
    }


def dedupe_tokens(profiles: List[Profile]) -> List[str]:
    tokens: List[str] = []
    seen = set()
    for profile in profiles:
        token = profile.fcm_token
        if token and token not in seen:
            seen.add(token)
            tokens.append(token)
    return tokens
