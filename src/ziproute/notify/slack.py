from __future__ import annotations

import httpx
import structlog

from ziproute.models.schemas import PerformanceAlert

logger = structlog.get_logger()


def _build_slack_blocks(alert: PerformanceAlert, severity_emoji: dict[str, str] | None = None) -> list[dict]:
    """Build Slack Block Kit blocks for a performance alert."""
    emoji = (severity_emoji or {}).get(alert.severity.value, ":rotating_light:")
    divider = {"type": "divider"}

    blocks = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{emoji} {alert.severity.value} - {alert.type.value.replace('_', ' ').title()}",
            },
        },
        divider,
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{alert.component}*\n{alert.message}"},
        },
    ]

    if alert.metrics:
        metric_text = "\n".join(f"  - {name}: {value:g}" for name, value in sorted(alert.metrics.items()))
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f":bar_chart: *Metrics*\n{metric_text}"},
        })

    blocks.append(divider)

    context_parts = [f"Alert {alert.id}", alert.timestamp.strftime("%Y-%m-%d %H:%M UTC")]
    if alert.occurrences > 1:
        context_parts.append(f"Seen {alert.occurrences}x")
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": "  |  ".join(context_parts)}],
    })
    return blocks


class SlackNotifier:
    def __init__(self, webhook_url: str, http: httpx.AsyncClient, severity_emoji: dict[str, str] | None = None):
        self.webhook_url = webhook_url
        self._http = http
        self.severity_emoji = severity_emoji or {}

    async def notify_alert(self, alert: PerformanceAlert) -> bool:
        """Post an alert to the configured webhook. Returns True if Slack accepted it."""
        if not self.webhook_url:
            logger.warning("slack_not_configured", alert_id=alert.id)
            return False

        payload = {
            "text": f"{alert.severity.value}: {alert.message}",
            "blocks": _build_slack_blocks(alert, self.severity_emoji),
        }
        try:
            resp = await self._http.post(self.webhook_url, json=payload, timeout=15.0)
        except httpx.HTTPError as e:
            logger.error("slack_failed", alert_id=alert.id, error=str(e))
            return False

        if resp.status_code == 200:
            logger.info("slack_sent", alert_id=alert.id)
            return True
        logger.error("slack_failed", alert_id=alert.id, status=resp.status_code, body=resp.text[:200])
        return False
