"""Content builders for command replies."""

from __future__ import annotations

from typing import Any


def _build_reply_content(
    body: str,
    *,
    reply_to_event_id: str,
    reply_to_sender: str | None = None,
    notice: bool = False,
) -> dict[str, Any]:
    """Build an m.room.message reply to `reply_to_event_id`.

    Bot output is commonly sent as `m.notice` so other bots ignore it.
    When the original sender is known it is listed in `m.mentions`, which
    lets clients highlight the reply for them.
    """
    content: dict[str, Any] = {
        "msgtype": "m.notice" if notice else "m.text",
        "body": body,
        "m.relates_to": {
            "m.in_reply_to": {"event_id": reply_to_event_id},
        },
    }
    if reply_to_sender:
        content["m.mentions"] = {"user_ids": [reply_to_sender]}
    return content
