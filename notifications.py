# notifications.py
"""Discord webhook notification for newly verified claims. Best effort only."""

import logging
from datetime import datetime, timezone

import requests

import config
from redistribution import format_units

logger = logging.getLogger(__name__)

DISCORD_BLUE = 3447003


def build_claim_embed(x42_address: str, epix_address: str, snapshot_balance: int) -> dict:
    amount = format_units(snapshot_balance, config.UNIT_SCALE)
    return {
        "embeds": [{
            "title": "🎉 New Claim Verified! 🎉",
            "description": (
                "A user has claimed their snapshotted balance successfully.\n\n"
                f"Check the claim details at [{config.CLAIM_SITE_URL}]({config.CLAIM_SITE_URL})"
            ),
            "fields": [
                {"name": f"{config.SOURCE_TICKER} Address", "value": x42_address, "inline": True},
                {"name": "Epix Address", "value": epix_address, "inline": True},
                {"name": "Amount", "value": f"{amount} {config.SOURCE_TICKER}", "inline": True},
            ],
            "color": DISCORD_BLUE,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }]
    }


def send_snapshot_verification_notification(
    x42_address: str, epix_address: str, snapshot_balance: int
) -> bool:
    """Returns True if Discord accepted the message."""
    webhook_url = config.DISCORD_WEBHOOK_URL
    if not webhook_url:
        logger.warning("Discord webhook URL not configured, skipping notification")
        return False

    try:
        r = requests.post(
            webhook_url,
            json=build_claim_embed(x42_address, epix_address, snapshot_balance),
            timeout=config.NOTIFY_HTTP_TIMEOUT,
        )
        r.raise_for_status()
        return True
    except Exception as e:
        logger.error("Failed to send Discord webhook for %s: %s", x42_address, e)
        return False
