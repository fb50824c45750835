"""Publish participation changes over Redis pub/sub.

Observers (other tabs and devices of the same user, challenge pages) subscribe
to ``pubsub:participation_update`` or the per-user ``ws:user:{user_id}`` channel.
Delivery is best effort: a failed publish is logged and never fails the write
that triggered it.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from ctrack.db.models import Participation

logger = structlog.get_logger()

PARTICIPATION_CHANNEL = "pubsub:participation_update"

EVENT_JOINED = "joined"
EVENT_CHECKED_IN = "checked_in"
EVENT_COMPLETED = "completed"
EVENT_LEFT = "left"


def build_payload(event: str, participation: "Participation") -> dict[str, object]:
    return {
        "event": event,
        "challenge_id": participation.challenge_id,
        "user_id": participation.user_id,
        "progress": participation.progress,
        "status": participation.status,
        "check_in_streak": participation.check_in_streak,
    }


async def publish_participation_event(
    redis: object | None,
    event: str,
    participation: "Participation",
) -> None:
    """Broadcast a participation change and mirror it to the owner's channel."""
    if redis is None:
        return

    payload = build_payload(event, participation)
    try:
        await redis.publish(PARTICIPATION_CHANNEL, json.dumps(payload))  # type: ignore[union-attr]
        await redis.publish(  # type: ignore[union-attr]
            f"ws:user:{participation.user_id}",
            json.dumps({"event": event, "data": payload}),
        )
    except Exception:
        logger.warning(
            "participation_event_publish_failed",
            event_name=event,
            challenge_id=participation.challenge_id,
            user_id=participation.user_id,
            exc_info=True,
        )
