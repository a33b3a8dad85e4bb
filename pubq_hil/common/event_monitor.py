"""
Cloud event monitor.

Consumes the device's cloud event stream and lets scenarios wait for
published events, including runs of counter-numbered test events.
"""
import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import structlog

from .monitor import NO_MATCH, CorrelationEngine, MonitorOptions
from .records import EventRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class EventOptions(MonitorOptions):
    """Predicate fields for cloud events. Every field given must hold."""
    name_is: Optional[str] = None
    name_includes: Optional[str] = None
    data_is: Optional[str] = None
    data_includes: Optional[str] = None

    def match(self, record: EventRecord) -> Tuple[bool, Any]:
        if self.name_is is not None and record.name != self.name_is:
            return NO_MATCH
        if self.name_includes is not None and self.name_includes not in record.name:
            return NO_MATCH
        if self.data_is is not None and record.data != self.data_is:
            return NO_MATCH
        if self.data_includes is not None and self.data_includes not in (record.data or ""):
            return NO_MATCH
        return True, record

    def with_exact(self, text: str) -> 'EventOptions':
        return dataclasses.replace(self, data_is=text)


class EventMonitor(CorrelationEngine[EventRecord, EventOptions]):
    """Correlation engine over the device's published cloud events."""

    kind = "event"
    options_type = EventOptions

    def feed(self, event: Mapping[str, Any]) -> EventRecord:
        """Ingest one event from the cloud event stream."""
        record = EventRecord.from_event(event, self.next_sequence())
        logger.info("cloud_event", name=record.name, data=record.data,
                    published_at=record.published_at, source_id=record.source_id)
        return self.append_record(record)
