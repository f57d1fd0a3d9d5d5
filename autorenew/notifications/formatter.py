from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

# Discord embed colors by severity
COLOR_INFO = 0x3399FF  # blue
COLOR_SUCCESS = 0x00CC66  # green
COLOR_WARNING = 0xFF9900  # orange
COLOR_CRITICAL = 0xE82515  # red

FIELD_VALUE_LIMIT = 1024


def _field(name: str, value: Any, inline: bool = True) -> Dict[str, Any]:
    return {"name": name, "value": str(value)[:FIELD_VALUE_LIMIT] or "-", "inline": inline}


def _embed(
    title: str,
    description: str,
    color: int,
    fields: List[Dict[str, Any]],
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    return {
        "title": title,
        "description": description,
        "color": color,
        "fields": fields,
        "timestamp": (timestamp or datetime.now()).isoformat(),
    }


def format_system_expiring(
    system_id: str, username: str, minutes_left: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Account is about to expire (a few minutes left)."""
    text = f"⚠️ System {system_id} expires in {minutes_left} min"
    embed = _embed(
        title="System expiring soon",
        description=f"`{username}` will expire in {minutes_left} minutes.",
        color=COLOR_WARNING,
        fields=[
            _field("System", system_id),
            _field("User", username),
            _field("Minutes left", minutes_left),
        ],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_system_expired(
    system_id: str, username: str, minutes_overdue: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    text = f"❌ System {system_id} expired"
    embed = _embed(
        title="System expired",
        description=f"`{username}` expired {minutes_overdue} minutes ago; renewal queued.",
        color=COLOR_CRITICAL,
        fields=[
            _field("System", system_id),
            _field("User", username),
            _field("Expired for (min)", minutes_overdue),
        ],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_automation_offline(
    reason: str,
    last_heartbeat: Optional[datetime],
    current_url: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    text = "🔴 Portal automation offline"
    embed = _embed(
        title="Automation offline",
        description=reason,
        color=COLOR_CRITICAL,
        fields=[
            _field("Last heartbeat", last_heartbeat.isoformat() if last_heartbeat else "never"),
            _field("Current URL", current_url or "-", inline=False),
        ],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_automation_stuck(
    current_url: Optional[str], now: Optional[datetime] = None
) -> Dict[str, Any]:
    text = "⚠️ Portal automation stuck on login page"
    embed = _embed(
        title="Automation stuck",
        description="Session reports logged in but the browser is parked on the login page.",
        color=COLOR_WARNING,
        fields=[_field("Current URL", current_url or "-", inline=False)],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_renewal_failed(
    system_id: str,
    username: str,
    attempts: int,
    error: str,
    screenshot_path: Optional[str] = None,
    trace_id: str = "-",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    text = f"❌ Renewal failed for system {system_id} after {attempts} attempts"
    fields = [
        _field("System", system_id),
        _field("User", username),
        _field("Attempts", attempts),
        _field("Error", error, inline=False),
        _field("Trace", trace_id, inline=False),
    ]
    if screenshot_path:
        fields.append(_field("Screenshot", screenshot_path, inline=False))
    embed = _embed(
        title="Renewal failed",
        description="Automatic renewal gave up; renew manually on the portal.",
        color=COLOR_CRITICAL,
        fields=fields,
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_renewal_succeeded(
    system_id: str,
    username: str,
    new_expiration: Optional[datetime],
    trace_id: str = "-",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    text = f"✅ System {system_id} renewed"
    embed = _embed(
        title="Renewal succeeded",
        description=f"`{username}` was renewed on the portal.",
        color=COLOR_SUCCESS,
        fields=[
            _field("System", system_id),
            _field("New expiration", new_expiration.isoformat() if new_expiration else "-"),
            _field("Trace", trace_id, inline=False),
        ],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_restart_failed(error: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    text = "🔴 Automation restart failed"
    embed = _embed(
        title="Automation restart failed",
        description="The watchdog could not bring the browser session back.",
        color=COLOR_CRITICAL,
        fields=[_field("Error", error, inline=False)],
        timestamp=now,
    )
    return {"text": text, "embed": embed}


def format_login_challenge(
    error: str, screenshot_path: Optional[str] = None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    text = "🛑 Portal login needs manual intervention"
    fields = [_field("Error", error, inline=False)]
    if screenshot_path:
        fields.append(_field("Screenshot", screenshot_path, inline=False))
    embed = _embed(
        title="Login blocked",
        description=(
            "Automatic login stopped. Solve the challenge in the browser profile, "
            "then clear the login block."
        ),
        color=COLOR_CRITICAL,
        fields=fields,
        timestamp=now,
    )
    return {"text": text, "embed": embed}
