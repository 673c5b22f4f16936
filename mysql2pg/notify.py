"""
Optional Slack notification at the end of a run
"""
import logging
import os
import ssl
from datetime import datetime
from typing import Optional

import certifi
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from mysql2pg.state import RunState

logger = logging.getLogger(__name__)


class SlackNotifier:
    """Send migration results to Slack"""

    def __init__(self, client: Optional[WebClient] = None):
        self.slack_token = os.getenv('SLACK_BOT_TOKEN')
        self.slack_channel = os.getenv('SLACK_CHANNEL_ID', os.getenv('SLACK_CHANNEL', '#db-migration'))

        # Create SSL context with certifi CA bundle
        if client is not None:
            self.client = client
        elif self.slack_token:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self.client = WebClient(token=self.slack_token, ssl=ssl_context)
        else:
            self.client = None

    def build_blocks(self, state: RunState, database: str, error: Optional[str] = None) -> list:
        if error:
            status_emoji, status_text = ":x:", "FAILED"
        elif state.inconsistencies or state.failed_tables:
            status_emoji, status_text = ":warning:", "COMPLETED WITH WARNINGS"
        else:
            status_emoji, status_text = ":white_check_mark:", "SUCCEEDED"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{status_emoji} MySQL → PostgreSQL Migration - {database} - {status_text}"}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Tasks:*\n{state.completed_tasks}/{state.total_tasks}"},
                    {"type": "mrkdwn", "text": f"*Inconsistent Tables:*\n{len(state.inconsistencies)}"},
                    {"type": "mrkdwn", "text": f"*Failed Tables:*\n{len(state.failed_tables)}"},
                    {"type": "mrkdwn", "text": f"*Timestamp:*\n{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"}
                ]
            }
        ]

        if state.stats:
            phase_text = "*Phases:*\n" + "\n".join(
                f"• {stat.name}: {stat.object_count} objects in {stat.duration:.1f}s" for stat in state.stats
            )
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": phase_text}})

        if state.inconsistencies:
            lines = [f"• *{item.table}*: source {item.source_count:,}, target {item.target_count:,}"
                     for item in state.inconsistencies[:10]]  # Limit to avoid message size limits
            if len(state.inconsistencies) > 10:
                lines.append(f"_...and {len(state.inconsistencies) - 10} more_")
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "*Row Count Mismatches:*\n" + "\n".join(lines)}})

        if error:
            blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Error:*\n```{error[:2500]}```"}})
        return blocks

    def send_summary(self, state: RunState, database: str, error: Optional[str] = None) -> None:
        """Send run summary to Slack"""
        if not self.client:
            logger.warning("Slack token not configured - skipping notification")
            return

        try:
            self.client.chat_postMessage(
                channel=self.slack_channel,
                blocks=self.build_blocks(state, database, error),
                text=f"Migration of {database} {'failed' if error else 'finished'}"  # Fallback text
            )
            logger.info(f"Slack notification sent to {self.slack_channel}")
        except SlackApiError as e:
            logger.error(f"Failed to send Slack notification: {e.response['error']}")
