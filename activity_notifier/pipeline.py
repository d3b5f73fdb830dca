import asyncio
import logging
from typing import Optional

from .alert_ledger import AlertLedger
from .audience import resolve_audience
from .config import Settings
from .dispatcher import PushDispatcher
from .exceptions import ActivityNotFoundError, MissingActivityIdError
from .schemas import NotifyResult, build_data_payload, dedupe_tokens
from .store import ActivityStore
from .token_provider import TokenProvider

logger = logging.getLogger(__name__)


class NotificationPipeline:
    """Announces a newly created activity to the users who want to hear about it."""

    def __init__(self,
                 settings: Settings,
                 store: ActivityStore,
                 ledger: AlertLedger,
                 dispatcher: PushDispatcher,
                 token_provider: Optional[TokenProvider] = None):
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.token_provider = token_provider
        if dispatcher.requires_access_token and token_provider is None:
            raise ValueError("FCM v1 transport requires a token provider")
        logger.info("Notification pipeline initialized")

    async def notify_activity(self, activity_id: Optional[str]) -> NotifyResult:
        """
        Run the whole fan-out for one activity.

        Args:
            activity_id: Identifier of the newly created activity

        Returns:
            NotifyResult with delivered/failed counts, the number of device
            tokens targeted and the number of alerts written

        Raises:
            MissingActivityIdError, MissingLocationError, MissingSportError: 400
            ActivityNotFoundError: 404
            StoreError, TokenAcquisitionError: 500
        """
        if not activity_id:
            raise MissingActivityIdError()

        activity = await asyncio.to_thread(self.store.get_activity, activity_id)
        if activity is None:
            logger.error(f"Activity {activity_id} not found")
            raise ActivityNotFoundError(activity_id)
        logger.info(
            f"Activity {activity.id} loaded: region={activity.region_id} "
            f"comuna={activity.comuna_id} sport={activity.sport_id}"
        )

        audience = await asyncio.to_thread(resolve_audience, activity, self.store)
        tokens = dedupe_tokens(audience)
        logger.info(f"Final FCM tokens: {len(tokens)}")
        if not tokens:
            logger.info(f"No FCM tokens left for activity {activity.id}, nothing to send")
            return NotifyResult()

        sport_name = await asyncio.to_thread(self.ledger.lookup_sport_name, activity.sport_id)
        unalerted = await asyncio.to_thread(self.ledger.filter_unalerted, audience, activity.id)
        alerts_created = await asyncio.to_thread(
            self.ledger.record_alerts, unalerted, activity, sport_name
        )

        if self.settings.dispatch_only_unalerted:
            tokens = dedupe_tokens(unalerted)
            if not tokens:
                logger.info(f"Every recipient was already alerted for activity {activity.id}")
                return NotifyResult(alertsCreatedFor=alerts_created)

        access_token = None
        if self.dispatcher.requires_access_token:
            access_token = (await self.token_provider.obtain_access_token()).token

        result = await self.dispatcher.dispatch(
            tokens,
            title=self.settings.notification_title,
            body=activity.title or self.settings.notification_fallback_body,
            data=build_data_payload(activity, self.settings.click_action),
            access_token=access_token,
        )

        logger.info(
            f"notify-new-activity finished for {activity.id}. "
            f"OK: {result.delivered} Errors: {result.failed}"
        )
        return NotifyResult(
            delivered=result.delivered,
            failed=result.failed,
            totalTokens=len(tokens),
            alertsCreatedFor=alerts_created,
        )
