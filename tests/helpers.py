"""
Shared test helpers: work item factory, fake clock and mock call readers.
"""
import datetime as dt
import uuid
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

from src.models.base import utcnow
from src.models.work_item import QueueType, WorkItem


class FakeClock:
    """
    Manually advanced clock, starting at the current whole second.

    Whole seconds keep values equal after the store truncates to milliseconds.
    """

    def __init__(self, start: Optional[dt.datetime] = None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> dt.datetime:
        self.now += dt.timedelta(seconds=seconds)
        return self.now


def make_item(
    webhook_type: str,
    payload: Dict[str, Any],
    queue_type: QueueType = QueueType.GENERAL,
    location_id: str = "loc1",
    webhook_id: Optional[str] = None,
) -> WorkItem:
    return WorkItem(
        webhook_id=webhook_id or f"wh-{uuid.uuid4().hex[:10]}",
        type=webhook_type,
        queue_type=queue_type,
        payload=payload,
        location_id=location_id,
        attempts=1,
    )


def published(publisher: AsyncMock) -> List[Tuple[str, str, Dict[str, Any]]]:
    """(channel, event name, data) for every publish the mock received."""
    return [tuple(call.args) for call in publisher.publish.await_args_list]


def pushed(push: AsyncMock) -> List[Tuple[str, str]]:
    """(user id, title) for every push the mock received."""
    return [(call.args[0], call.args[1]) for call in push.send_to_user.await_args_list]


def fail_once(monkeypatch, target: Any, name: str, error: Exception) -> None:
    """Make `target.name` raise `error` on its first call and behave normally after."""
    original = getattr(target, name)
    calls = []

    async def flaky(*args, **kwargs):
        calls.append(name)
        if len(calls) == 1:
            raise error
        return await original(*args, **kwargs)

    monkeypatch.setattr(target, name, flaky)


async def automation_triggers(database) -> List[Tuple[str, Dict[str, Any]]]:
    """(trigger type, trigger data) for every queued automation row, oldest first."""
    rows = await database.automation_queue.find({}).sort("createdAt", 1).to_list(None)
    return [(row["trigger"]["type"], row["trigger"]["data"]) for row in rows]
