"""
Best-effort publish/subscribe relay for instructor dashboards.

The registry is created with the application and owned by it; connections
are added on connect and removed on disconnect, nothing else mutates it.
Publishing only enqueues onto each subscriber's outbound queue, so a given
subscriber sees messages in publish order. Nothing is buffered for
subscribers that are not connected and nothing is retried.
"""
import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.config import settings
from ..models.user import UserRole

logger = logging.getLogger(__name__)

INSTRUCTORS_GROUP = "instructors"


def exam_group(exam_id) -> str:
    return f"exam-{exam_id}"


def attempt_group(attempt_id) -> str:
    return f"attempt-{attempt_id}"


class Subscriber:
    def __init__(self, connection_id: str, queue_size: int):
        self.connection_id = connection_id
        self.user_id: Optional[int] = None
        self.role: Optional[str] = None
        self.groups: Set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0

    def offer(self, message: dict) -> bool:
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Dropping live message for slow subscriber {self.connection_id}")
            return False

    def __repr__(self):
        return f"<Subscriber {self.connection_id} user={self.user_id} role={self.role}>"


class ConnectionRegistry:
    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.live_queue_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._groups: Dict[str, Set[str]] = {}
        self._ids = itertools.count(1)

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    def group_size(self, group: str) -> int:
        return len(self._groups.get(group, ()))

    def connect(self, connection_id: Optional[str] = None) -> Subscriber:
        connection_id = connection_id or f"conn-{next(self._ids)}"
        subscriber = Subscriber(connection_id, self.queue_size)
        self._subscribers[connection_id] = subscriber
        logger.info(f"Live connection opened: {connection_id}")
        return subscriber

    def register(self, subscriber: Subscriber, user_id: Optional[int], role: Optional[str]) -> None:
        subscriber.user_id = user_id
        subscriber.role = role
        if role in UserRole.STAFF:
            self.join(subscriber, INSTRUCTORS_GROUP)

    def join(self, subscriber: Subscriber, group: str) -> None:
        if subscriber.connection_id not in self._subscribers:
            return
        self._groups.setdefault(group, set()).add(subscriber.connection_id)
        subscriber.groups.add(group)

    def disconnect(self, subscriber: Subscriber) -> None:
        self._subscribers.pop(subscriber.connection_id, None)
        for group in subscriber.groups:
            members = self._groups.get(group)
            if members is None:
                continue
            members.discard(subscriber.connection_id)
            if not members:
                del self._groups[group]
        subscriber.groups.clear()
        logger.info(f"Live connection closed: {subscriber.connection_id}")

    def publish(self, group: str, event: str, data: Any) -> int:
        """Enqueue ``event`` for every current member of ``group``. Returns the number reached."""
        members = self._groups.get(group)
        if not members:
            return 0
        message = {"event": event, "data": data}
        delivered = 0
        for connection_id in list(members):
            subscriber = self._subscribers.get(connection_id)
            if subscriber is not None and subscriber.offer(message):
                delivered += 1
        return delivered


async def pump(subscriber: Subscriber, send: Callable[[dict], Awaitable[None]]) -> None:
    """Drain the subscriber's queue into ``send`` until cancelled."""
    while True:
        message = await subscriber.queue.get()
        await send(message)


def dispatch_client_message(registry: ConnectionRegistry, subscriber: Subscriber, message: dict) -> None:
    """Handle a message sent by a connected client."""
    event = message.get("event")
    data = message.get("data") or {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring live message {event!r} with non-object data from {subscriber.connection_id}")
        return

    if event == "join-exam":
        # Students only publish; watching groups is for staff
        if subscriber.role not in UserRole.STAFF:
            logger.warning(f"Ignoring join-exam from non-staff connection {subscriber.connection_id}")
            return
        if data.get("exam_id") is not None:
            registry.join(subscriber, exam_group(data["exam_id"]))
        if data.get("attempt_id") is not None:
            registry.join(subscriber, attempt_group(data["attempt_id"]))
    elif event == "student-activity":
        registry.publish(INSTRUCTORS_GROUP, "student-activity", data)
        if data.get("exam_id") is not None:
            registry.publish(exam_group(data["exam_id"]), "activity-update", data)
    elif event == "violation":
        registry.publish(INSTRUCTORS_GROUP, "violation-alert", data)
    else:
        logger.debug(f"Ignoring live message {event!r} from {subscriber.connection_id}")


class LiveNotifier:
    """Lifecycle events as seen by instructor dashboards."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def exam_started(self, attempt, exam, student) -> int:
        payload = {
            "attempt_id": attempt.id,
            "exam_id": exam.id,
            "exam_title": exam.title,
            "student_id": student.id,
            "student_name": student.full_name,
            "started_at": attempt.started_at.isoformat() if attempt.started_at else None,
        }
        self.registry.publish(exam_group(exam.id), "activity-update", {"type": "exam-started", **payload})
        return self.registry.publish(INSTRUCTORS_GROUP, "exam-started", payload)

    def exam_submitted(self, attempt, exam, student) -> int:
        payload = {
            "attempt_id": attempt.id,
            "exam_id": exam.id,
            "exam_title": exam.title,
            "student_id": student.id,
            "student_name": student.full_name,
            "score": attempt.score,
            "percentage": attempt.percentage,
            "passed": attempt.passed,
            "flagged": attempt.flagged,
            "violations": len(attempt.violations),
            "status": attempt.status,
        }
        self.registry.publish(attempt_group(attempt.id), "activity-update", {"type": "exam-submitted", **payload})
        return self.registry.publish(INSTRUCTORS_GROUP, "exam-submitted", payload)

    def violation_alert(self, attempt, violation, reporter) -> int:
        payload = {
            "attempt_id": attempt.id,
            "exam_id": attempt.exam_id,
            "student_id": reporter.id if reporter is not None else None,
            "student_name": reporter.full_name if reporter is not None else None,
            "violation": {
                "type": violation.violation_type,
                "description": violation.description,
                "severity": violation.severity,
                "timestamp": violation.timestamp.isoformat() if violation.timestamp else None,
            },
            "total_violations": len(attempt.violations),
            "tab_switches": attempt.tab_switches,
            "flagged": attempt.flagged,
        }
        self.registry.publish(attempt_group(attempt.id), "activity-update", {"type": "violation-alert", **payload})
        return self.registry.publish(INSTRUCTORS_GROUP, "violation-alert", payload)
