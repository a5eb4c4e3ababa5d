"""Read-only session export as JSON or Markdown."""

import json

from lecturechat.errors import ValidationFailed
from lecturechat.storage.repository import Repository

from .analytics import session_durations
from .context import format_timestamp
from .schemas import ChatMessage, ChatSession, MessageRole, utcnow
from .titles import display_title

EXPORT_FORMATS = ("json", "markdown")


def session_export_data(session: ChatSession, messages: list[ChatMessage]) -> dict:
    duration = session_durations(messages).get(session.id, 0.0)
    return {
        "session": {
            "id": session.id,
            "title": display_title(session),
            "anchor_video_id": session.anchor_video_id,
            "archived": session.archived,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
        },
        "messages": [
            {
                "role": m.role.value,
                "content": m.content,
                "created_at": m.created_at.isoformat(),
                "video_references": [
                    r.model_dump() | {"timestamp_label": format_timestamp(r.timestamp)}
                    for r in m.video_references
                ],
            }
            for m in messages
        ],
        "analytics": {
            "message_count": len(messages),
            "duration_minutes": round(duration / 60),
        },
        "exported_at": utcnow().isoformat(),
    }


def render_markdown(data: dict) -> str:
    session = data["session"]
    lines = [
        f"# {session['title']}",
        "",
        f"**Created:** {session['created_at']}",
        f"**Messages:** {data['analytics']['message_count']}",
        f"**Duration:** {data['analytics']['duration_minutes']} minutes",
        "",
        "---",
        "",
    ]

    for message in data["messages"]:
        role = "You" if message["role"] == MessageRole.USER.value else "Assistant"
        lines += [f"### {role} ({message['created_at']})", "", message["content"], ""]
        if message["video_references"]:
            lines.append("**Video References:**")
            for ref in message["video_references"]:
                title = ref["video_title"] or ref["video_id"]
                lines.append(f"- {title} at {ref['timestamp_label']}")
            lines.append("")

    lines += ["---", "", f"*Exported on {data['exported_at']}*", ""]
    return "\n".join(lines)


async def export_session(
    repository: Repository,
    session_id: str,
    format: str = "json",
    tenant_id: str | None = None,
) -> bytes:
    """Render a session and its messages without mutating anything.

    Raises:
        ValidationFailed: Unknown session or format.
    """
    if format not in EXPORT_FORMATS:
        raise ValidationFailed(f"Unsupported export format: {format}")

    session = await repository.get_session(session_id)
    if session is None or (tenant_id is not None and session.tenant_id != tenant_id):
        raise ValidationFailed(f"Session {session_id} not found")

    messages = await repository.list_messages(session_id)
    data = session_export_data(session, messages)

    if format == "markdown":
        return render_markdown(data).encode("utf-8")
    return json.dumps(data, indent=2, default=str).encode("utf-8")
