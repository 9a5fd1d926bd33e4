"""Thread snapshot persistence.

Saves a thread's events to YAML so a conversation can be replayed into a
fresh projector later:
  $PROJECT/.threadline/threads/<thread-id>.yaml

Snapshot files contain:
- thread_id: Thread identifier
- saved_at: ISO timestamp
- events: List of events (id, thread_id, type, timestamp, data)
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from threadline.approval.types import (
    ApprovalDecision,
    ToolApprovalRequest,
    ToolApprovalResponse,
)
from threadline.errors import ThreadStorageError
from threadline.logging import get_logger
from threadline.threads.events import (
    EventType,
    ThreadEvent,
    ToolCall,
    ToolResult,
    as_tool_call,
    as_tool_result,
)

log = get_logger("storage")


def get_threads_dir(project_root: str) -> Path:
    return Path(project_root) / ".threadline" / "threads"


def get_thread_path(project_root: str, thread_id: str) -> Path:
    return get_threads_dir(project_root) / f"{thread_id}.yaml"


def _encode_data(data: Any) -> Any:
    if isinstance(data, (ToolCall, ToolResult, ToolApprovalRequest, ToolApprovalResponse)):
        return data.to_dict()
    return data


def _decode_data(event_type: EventType | str, data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    match event_type:
        case EventType.TOOL_CALL:
            # Malformed calls stay raw; the timeline skips them
            return as_tool_call(data) or data
        case EventType.TOOL_RESULT:
            return as_tool_result(data)
        case EventType.TOOL_APPROVAL_REQUEST:
            return ToolApprovalRequest(tool_call_id=data["tool_call_id"])
        case EventType.TOOL_APPROVAL_RESPONSE:
            return ToolApprovalResponse(
                tool_call_id=data["tool_call_id"],
                decision=ApprovalDecision(data["decision"]),
            )
        case _:
            return data


def event_to_dict(event: ThreadEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "thread_id": event.thread_id,
        "type": event.type.value if isinstance(event.type, EventType) else str(event.type),
        "timestamp": event.timestamp.isoformat(),
        "data": _encode_data(event.data),
    }


def event_from_dict(data: dict[str, Any]) -> ThreadEvent:
    event_type = EventType.coerce(data["type"])
    timestamp = data["timestamp"]
    if not isinstance(timestamp, datetime):
        timestamp = datetime.fromisoformat(str(timestamp))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return ThreadEvent(
        id=data["id"],
        thread_id=data["thread_id"],
        type=event_type,
        timestamp=timestamp,
        data=_decode_data(event_type, data.get("data")),
    )


def save_thread(project_root: str, thread_id: str, events: list[ThreadEvent]) -> Path:
    """Save a thread's events to YAML.

    Performs an atomic write by writing to a temp file first.

    Returns:
        Path to the saved snapshot.

    Raises:
        ThreadStorageError: If the snapshot could not be written.
    """
    threads_dir = get_threads_dir(project_root)
    path = threads_dir / f"{thread_id}.yaml"
    temp_path = threads_dir / f"{thread_id}.yaml.tmp"

    data = {
        "thread_id": thread_id,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "events": [event_to_dict(e) for e in events],
    }

    try:
        threads_dir.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        temp_path.replace(path)
    except (OSError, yaml.YAMLError) as e:
        if temp_path.exists():
            temp_path.unlink()
        raise ThreadStorageError(f"Failed to save thread {thread_id}: {e}") from e

    log.debug("Saved thread %s (%d events) to %s", thread_id, len(events), path)
    return path


def load_thread(path: Path) -> list[ThreadEvent]:
    """Load the events of a thread snapshot.

    Raises:
        ThreadStorageError: If the file is missing or malformed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return [event_from_dict(item) for item in data.get("events", [])]
    except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise ThreadStorageError(f"Failed to load thread from {path}: {e}") from e


def list_threads(project_root: str) -> list[str]:
    """List saved thread ids, sorted."""
    threads_dir = get_threads_dir(project_root)
    if not threads_dir.exists():
        return []
    return sorted(p.stem for p in threads_dir.glob("*.yaml"))
