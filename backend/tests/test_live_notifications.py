import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest

from secure_exam.services.live_notifications import (
    INSTRUCTORS_GROUP,
    ConnectionRegistry,
    LiveNotifier,
    attempt_group,
    dispatch_client_message,
    exam_group,
    pump,
)


def drain(subscriber):
    messages = []
    while not subscriber.queue.empty():
        messages.append(subscriber.queue.get_nowait())
    return messages


def test_publish_without_subscribers_is_dropped():
    registry = ConnectionRegistry(queue_size=4)
    assert registry.publish(INSTRUCTORS_GROUP, "exam-started", {"attempt_id": 1}) == 0

    late = registry.connect()
    registry.register(late, 7, "instructor")
    assert drain(late) == []


def test_only_staff_join_instructor_group():
    registry = ConnectionRegistry(queue_size=4)
    staff = registry.connect()
    admin = registry.connect()
    learner = registry.connect()
    registry.register(staff, 1, "instructor")
    registry.register(admin, 2, "admin")
    registry.register(learner, 3, "student")

    assert registry.publish(INSTRUCTORS_GROUP, "violation-alert", {"n": 1}) == 2
    assert drain(learner) == []
    assert drain(staff) == [{"event": "violation-alert", "data": {"n": 1}}]


def test_messages_arrive_in_publish_order():
    registry = ConnectionRegistry(queue_size=32)
    subscriber = registry.connect()
    registry.register(subscriber, 1, "instructor")

    for n in range(10):
        registry.publish(INSTRUCTORS_GROUP, "student-activity", {"n": n})

    assert [m["data"]["n"] for m in drain(subscriber)] == list(range(10))


def test_full_queue_drops_for_that_subscriber_only():
    registry = ConnectionRegistry(queue_size=2)
    slow = registry.connect()
    fast = registry.connect()
    registry.register(slow, 1, "instructor")
    registry.register(fast, 2, "instructor")

    registry.publish(INSTRUCTORS_GROUP, "a", 1)
    registry.publish(INSTRUCTORS_GROUP, "b", 2)
    drain(fast)
    assert registry.publish(INSTRUCTORS_GROUP, "c", 3) == 1

    assert slow.dropped == 1
    assert [m["event"] for m in drain(slow)] == ["a", "b"]
    assert [m["event"] for m in drain(fast)] == ["c"]


def test_disconnect_leaves_every_group():
    registry = ConnectionRegistry(queue_size=4)
    subscriber = registry.connect("conn-x")
    registry.register(subscriber, 1, "instructor")
    registry.join(subscriber, exam_group(5))
    registry.join(subscriber, attempt_group(9))
    assert registry.connection_count == 1

    registry.disconnect(subscriber)

    assert registry.connection_count == 0
    assert registry.group_size(INSTRUCTORS_GROUP) == 0
    assert registry.group_size(exam_group(5)) == 0
    assert registry.publish(attempt_group(9), "activity-update", {}) == 0

    registry.join(subscriber, INSTRUCTORS_GROUP)
    assert registry.group_size(INSTRUCTORS_GROUP) == 0


def test_client_messages_are_relayed():
    registry = ConnectionRegistry(queue_size=8)
    watcher = registry.connect()
    registry.register(watcher, 1, "instructor")
    student = registry.connect()
    registry.register(student, 2, "student")

    dispatch_client_message(registry, watcher, {"event": "join-exam", "data": {"exam_id": 4, "attempt_id": 11}})
    dispatch_client_message(registry, student, {"event": "student-activity", "data": {"exam_id": 4, "type": "focus"}})
    dispatch_client_message(registry, student, {"event": "violation", "data": {"attempt_id": 11}})
    dispatch_client_message(registry, student, {"event": "unknown"})

    assert [m["event"] for m in drain(watcher)] == ["student-activity", "activity-update", "violation-alert"]
    assert drain(student) == []


def test_notifier_payloads():
    registry = ConnectionRegistry(queue_size=8)
    watcher = registry.connect()
    registry.register(watcher, 1, "instructor")
    registry.join(watcher, attempt_group(3))
    notifier = LiveNotifier(registry)

    exam = SimpleNamespace(id=2, title="Chemistry")
    student = SimpleNamespace(id=5, full_name="Alice")
    violation = SimpleNamespace(
        violation_type="tab_switch", description=None, severity="medium", timestamp=datetime(2024, 1, 1, 9, 0)
    )
    attempt = SimpleNamespace(
        id=3, exam_id=2, started_at=datetime(2024, 1, 1, 8, 0), score=4, percentage=80, passed=True,
        flagged=False, violations=[violation], status="submitted", tab_switches=1,
    )

    assert notifier.exam_started(attempt, exam, student) == 1
    assert notifier.violation_alert(attempt, violation, student) == 1
    assert notifier.exam_submitted(attempt, exam, student) == 1

    events = drain(watcher)
    assert [m["event"] for m in events] == [
        "exam-started",
        "activity-update",
        "violation-alert",
        "activity-update",
        "exam-submitted",
    ]
    assert events[0]["data"]["started_at"] == "2024-01-01T08:00:00"
    assert events[2]["data"]["violation"]["type"] == "tab_switch"
    assert events[4]["data"]["percentage"] == 80
    assert events[4]["data"]["violations"] == 1


async def test_pump_forwards_until_cancelled():
    registry = ConnectionRegistry(queue_size=8)
    subscriber = registry.connect()
    registry.register(subscriber, 1, "instructor")
    sent = []

    async def send(message):
        sent.append(message)

    task = asyncio.create_task(pump(subscriber, send))
    registry.publish(INSTRUCTORS_GROUP, "exam-started", {"n": 1})
    registry.publish(INSTRUCTORS_GROUP, "exam-submitted", {"n": 2})
    for _ in range(10):
        if len(sent) == 2:
            break
        await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert [m["event"] for m in sent] == ["exam-started", "exam-submitted"]


def test_students_cannot_watch_groups():
    registry = ConnectionRegistry(queue_size=8)
    student = registry.connect()
    registry.register(student, 2, "student")

    dispatch_client_message(registry, student, {"event": "join-exam", "data": {"exam_id": 4, "attempt_id": 11}})

    assert registry.group_size(exam_group(4)) == 0
    assert registry.group_size(attempt_group(11)) == 0
    assert student.groups == set()


def test_non_object_data_is_ignored():
    registry = ConnectionRegistry(queue_size=8)
    watcher = registry.connect()
    registry.register(watcher, 1, "instructor")

    for data in ("oops", ["exam_id", 4], 7):
        dispatch_client_message(registry, watcher, {"event": "join-exam", "data": data})
        dispatch_client_message(registry, watcher, {"event": "student-activity", "data": data})

    assert watcher.groups == {INSTRUCTORS_GROUP}
    assert drain(watcher) == []
