"""Email templates.

Rich template rendering is owned by another service; the scheduling core
only needs the short critical-alert layout below.
"""

from html import escape


def critical_notification_html(
    recipient_name: str, message: str, action_url: str | None = None
) -> str:
    """HTML body for a critical notification email."""
    parts = [
        f"<p>Olá, {escape(recipient_name)}!</p>",
        f"<p>{escape(message)}</p>",
    ]
    if action_url:
        parts.append(f'<p><a href="{escape(action_url, quote=True)}">Acessar plataforma</a></p>')
    return "\n".join(parts)


def critical_notification_text(
    recipient_name: str, message: str, action_url: str | None = None
) -> str:
    """Plain text fallback for a critical notification email."""
    text = f"Olá, {recipient_name}!\n\n{message}"
    if action_url:
        text += f"\n\nAcessar plataforma: {action_url}"
    return text
