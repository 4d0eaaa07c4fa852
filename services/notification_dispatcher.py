"""
Notification fan-out for file status events

Every channel runs concurrently under its own timeout. A channel failure is
recorded in that channel's result and never reaches the caller.
"""

import asyncio
import logging
import time
from typing import List, Sequence

from services.notification_channels import Notifier
from services.notification_events import ChannelResult, DeliveryStatus, FileEvent, NotificationSkipped

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Channel-count-agnostic broadcast over a list of notifiers"""

    def __init__(self, notifiers: Sequence[Notifier], timeout: float = 10.0):
        self._notifiers = list(notifiers)
        self._timeout = timeout

    @property
    def channels(self) -> List[str]:
        return [notifier.name for notifier in self._notifiers]

    async def dispatch(self, event: FileEvent) -> List[ChannelResult]:
        results = await asyncio.gather(*(self._deliver(notifier, event) for notifier in self._notifiers))

        sent = sum(1 for result in results if result.status == DeliveryStatus.SENT)
        failed = sum(1 for result in results if result.status == DeliveryStatus.FAILED)
        logger.info(
            f"📣 NOTIFY_DISPATCHED: file={event.file_id} kind={event.kind.value} status={event.status.value} "
            f"sent={sent} failed={failed} skipped={len(results) - sent - failed}"
        )
        return list(results)

    async def _deliver(self, notifier: Notifier, event: FileEvent) -> ChannelResult:
        if not notifier.accepts(event):
            return ChannelResult(
                channel=notifier.name,
                status=DeliveryStatus.SKIPPED,
                error=f"not used for {event.kind.value}:{event.status.value} events",
            )

        start_time = time.monotonic()
        try:
            message_id = await asyncio.wait_for(notifier.send(event), timeout=self._timeout)
            return ChannelResult(
                channel=notifier.name,
                status=DeliveryStatus.SENT,
                message_id=message_id,
                response_time_ms=self._elapsed_ms(start_time),
            )
        except NotificationSkipped as skip:
            logger.info(f"⏭️ NOTIFY_SKIPPED: channel={notifier.name} file={event.file_id}: {skip}")
            return ChannelResult(channel=notifier.name, status=DeliveryStatus.SKIPPED, error=str(skip))
        except asyncio.TimeoutError:
            logger.error(f"❌ NOTIFY_TIMEOUT: channel={notifier.name} file={event.file_id} after {self._timeout}s")
            return ChannelResult(
                channel=notifier.name,
                status=DeliveryStatus.FAILED,
                error=f"timed out after {self._timeout}s",
                response_time_ms=self._elapsed_ms(start_time),
            )
        except Exception as e:
            logger.error(f"❌ NOTIFY_CHANNEL_FAILED: channel={notifier.name} file={event.file_id}: {e}")
            return ChannelResult(
                channel=notifier.name,
                status=DeliveryStatus.FAILED,
                error=str(e),
                response_time_ms=self._elapsed_ms(start_time),
            )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
