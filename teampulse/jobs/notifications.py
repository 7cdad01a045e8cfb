"""
Escalation notifications for TeamPulse.

Posts Slack Block Kit messages through an incoming webhook when the crisis scan
finds a new crisis or the weekly diagnosis moves a team to `breaking`.

Notifications are fire-and-forget: the blocking webhook call runs in a thread
executor inside a background task, and a failed send is logged and never
raised into the diagnosis or scan that triggered it.

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL
  Format: https://hooks.slack.com/services/xxx/yyy/zzz
  When unset, notifications are skipped with a debug log.

Usage:
    from teampulse.jobs.notifications import notify_crisis

    notify_crisis(event)   # returns immediately

Dependencies:
    - slack-sdk (WebhookClient)
    - teampulse.core.config.get_settings (for SLACK_WEBHOOK_URL)
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from slack_sdk.webhook import WebhookClient

from teampulse.core.config import get_settings
from teampulse.models.enums import CrisisSeverity
from teampulse.models.schemas import CrisisEvent, TeamState


logger = logging.getLogger(__name__)

SEVERITY_EMOJI: Dict[CrisisSeverity, str] = {
    CrisisSeverity.LOW: ":large_yellow_circle:",
    CrisisSeverity.MEDIUM: ":large_orange_circle:",
    CrisisSeverity.HIGH: ":red_circle:",
    CrisisSeverity.CRITICAL: ":rotating_light:",
}

# References to in-flight sends so they are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


# =============================================================================
# Slack Message Formatting
# =============================================================================


def _footer() -> Dict[str, Any]:
    timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
    return {
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Generated at {timestamp} | TeamPulse"}
        ]
    }


def format_crisis_blocks(event: CrisisEvent, team_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Block Kit message for a crisis event.

    Args:
        event: Stored crisis event.
        team_name: Display name; the team ID is used when omitted.
    """
    team_label = team_name or event.team_id
    crisis_label = event.crisis_type.value.replace("_", " ").title()
    emoji = SEVERITY_EMOJI.get(event.severity, "")

    signal_lines = []
    for signal in event.signals:
        sign = "+" if signal.deviation >= 0 else ""
        signal_lines.append(
            f"• {signal.metric.replace('_', ' ')}: {sign}{signal.deviation:.0f}% "
            f"({signal.significance.value})"
        )

    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{crisis_label} detected: {team_label}",
                "emoji": True
            }
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{emoji} *Severity:* {event.severity.value.upper()}  |  "
                    f"*Confidence:* {event.confidence_score}%  |  "
                    f"*Urgency:* {event.urgency.value}"
                )
            }
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "*Signals*\n" + ("\n".join(signal_lines) if signal_lines else "_none_")
            }
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Likely triggers:* {', '.join(event.likely_triggers)}\n"
                    f"*Recommended action:* {event.recommended_action}"
                )
            }
        },
        {"type": "divider"},
        _footer(),
    ]
    return blocks


def format_breaking_blocks(team_state: TeamState, team_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """Block Kit message for a team entering the breaking state."""
    team_label = team_name or team_state.team_id
    return [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"Team state BREAKING: {team_label}",
                "emoji": True
            }
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Week of {team_state.week_start.isoformat()}*\n"
                    f"{team_state.summary}\n"
                    f"*Dominant risk:* {team_state.dominant_risk.value.replace('_', ' ')}  |  "
                    f"*Confidence:* {team_state.confidence.value}"
                )
            }
        },
        {"type": "divider"},
        _footer(),
    ]


# =============================================================================
# Delivery
# =============================================================================


def send_blocks(blocks: List[Dict[str, Any]], text: str) -> Dict[str, Any]:
    """
    Send blocks through the configured webhook (blocking).

    Returns:
        Dict with success flag and, on failure or skip, the reason.
    """
    settings = get_settings()
    if not settings.slack_webhook_url:
        return {'success': False, 'skipped': True, 'reason': 'SLACK_WEBHOOK_URL not configured'}

    client = WebhookClient(settings.slack_webhook_url)
    response = client.send(text=text, blocks=blocks)

    if response.status_code == 200:
        return {'success': True}
    return {
        'success': False,
        'error': f'Slack API returned status {response.status_code}: {response.body}'
    }


async def deliver(blocks: List[Dict[str, Any]], text: str) -> Dict[str, Any]:
    """Send in a worker thread; failures are logged and returned, never raised."""
    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(None, send_blocks, blocks, text)
    except Exception as e:
        logger.error(f"Notification failed ({text}): {e}", exc_info=True)
        return {'success': False, 'error': str(e)}

    if result.get('skipped'):
        logger.debug(f"Notification skipped: {result['reason']}")
    elif not result['success']:
        logger.error(f"Notification failed ({text}): {result['error']}")
    return result


def _schedule(blocks: List[Dict[str, Any]], text: str) -> asyncio.Task:
    task = asyncio.create_task(deliver(blocks, text))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def notify_crisis(event: CrisisEvent, team_name: Optional[str] = None) -> asyncio.Task:
    """Schedule a crisis notification and return immediately."""
    text = f"{event.severity.value.upper()} crisis for {team_name or event.team_id}: {event.crisis_type.value}"
    return _schedule(format_crisis_blocks(event, team_name), text)


def notify_breaking_state(team_state: TeamState, team_name: Optional[str] = None) -> asyncio.Task:
    """Schedule a breaking-state notification and return immediately."""
    text = f"Team {team_name or team_state.team_id} is breaking"
    return _schedule(format_breaking_blocks(team_state, team_name), text)


async def drain_notifications() -> None:
    """Wait for in-flight notifications (used by the cron entry points before exit)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


__all__ = [
    "format_crisis_blocks",
    "format_breaking_blocks",
    "send_blocks",
    "deliver",
    "notify_crisis",
    "notify_breaking_state",
    "drain_notifications",
]
