"""
Publisher — pushes finished runs to live subscribers.

Per run, on the area's channel:
  1. "snapshot_update": snapshot + every alert + hotspots
  2. "critical_alert": critical alerts only, sent once per alert id
Subscribers choose between everything and emergencies only by passing
event_types when subscribing.
"""

import logging
from typing import Dict, List, Sequence

from pipeline.aggregation.models import Snapshot
from pipeline.alerts.alert_engine import Alert
from pipeline.classification.hotspot_detector import Hotspot
from pipeline.ingestion.models import isoformat
from pipeline.realtime.bus import Event, EventBus

logger = logging.getLogger(__name__)

SNAPSHOT_UPDATE = "snapshot_update"
CRITICAL_ALERT = "critical_alert"

# remembered critical alert ids per area
MAX_SENT_IDS = 500


class Publisher:
    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self._sent_critical: Dict[str, Dict[str, None]] = {}

    async def broadcast(
        self,
        snapshot: Snapshot,
        alerts: Sequence[Alert],
        hotspots: Sequence[Hotspot] = (),
    ) -> List[Alert]:
        """
        Publish one run's results.

        Returns:
            The critical alerts actually sent in the critical_alert event
            (ids already published for this area are skipped).
        """
        channel = snapshot.area
        await self.bus.publish(channel, Event(SNAPSHOT_UPDATE, {
            "snapshot": snapshot.to_dict(),
            "alerts": [a.to_dict() for a in alerts],
            "hotspots": [h.to_dict() for h in hotspots],
        }))

        sent = self._sent_critical.setdefault(channel, {})
        fresh = [a for a in alerts if a.is_critical and a.id not in sent]
        if fresh:
            delivered = await self.bus.publish(channel, Event(CRITICAL_ALERT, {
                "area": channel,
                "generated_at": isoformat(snapshot.generated_at),
                "alerts": [a.to_dict() for a in fresh],
            }))
            for a in fresh:
                sent[a.id] = None
            while len(sent) > MAX_SENT_IDS:
                del sent[next(iter(sent))]
            logger.warning(
                "Critical alert(s) for %s published to %d subscriber(s): %s",
                channel, delivered, ", ".join(a.message for a in fresh),
            )
        return fresh
