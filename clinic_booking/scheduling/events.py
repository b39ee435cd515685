"""Scheduling events handed to the notification side.

Events are published after the transaction that produced them commits.
Delivery is best effort: a failing publisher is logged and never undoes a
committed booking.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import redis
from pydantic import BaseModel, Field

from ..core.config import settings
from ..models.appointment import Appointment

logger = logging.getLogger(__name__)


class SchedulingEventType(str, Enum):
    CREATED = "appointment.created"
    RESCHEDULED = "appointment.rescheduled"
    CANCELLED = "appointment.cancelled"
    STATUS_CHANGED = "appointment.status_changed"


class SchedulingEvent(BaseModel):
    event_type: SchedulingEventType
    appointment_id: int
    doctor_id: int
    patient_id: int
    status: str
    start_datetime: datetime
    end_datetime: datetime
    actor_user_id: Optional[int] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def for_appointment(
        cls,
        event_type: SchedulingEventType,
        appointment: Appointment,
        actor_user_id: Optional[int],
    ) -> "SchedulingEvent":
        return cls(
            event_type=event_type,
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            status=appointment.status.value,
            start_datetime=appointment.start_datetime,
            end_datetime=appointment.end_datetime,
            actor_user_id=actor_user_id,
        )


@runtime_checkable
class EventPublisher(Protocol):
    def publish(self, event: SchedulingEvent) -> None: ...


class NoopPublisher:
    def publish(self, event: SchedulingEvent) -> None:
        logger.info(
            f"[NOOP EVENTS] {event.event_type.value} appointment={event.appointment_id} "
            f"doctor={event.doctor_id} status={event.status}"
        )


class RedisPublisher:
    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel

    def publish(self, event: SchedulingEvent) -> None:
        try:
            self.client.publish(self.channel, event.model_dump_json())
        except redis.RedisError as e:
            logger.warning(
                f"Could not publish {event.event_type.value} for appointment "
                f"{event.appointment_id}: {str(e)}"
            )
            return
        logger.debug(f"Published {event.event_type.value} on {self.channel}")


def build_publisher(redis_client: redis.Redis) -> EventPublisher:
    """Pick the publisher named by ``EVENT_PUBLISHER``."""
    if settings.EVENT_PUBLISHER.lower() == "redis":
        return RedisPublisher(redis_client, settings.SCHEDULING_EVENTS_CHANNEL)
    return NoopPublisher()
