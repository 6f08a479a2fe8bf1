"""
Email Service - Sends notification emails through Amazon SES
"""

import asyncio
from functools import partial
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError
import structlog

from blip.config.settings import Settings, get_settings
from blip.utils.aws_session import create_aws_client

logger = structlog.get_logger(__name__)


class EmailDeliveryError(Exception):
    """SES refused or failed to send a message"""


class EmailService:
    """Service for sending emails"""

    def __init__(self, settings: Optional[Settings] = None, ses_client: Any = None):
        self.settings = settings or get_settings()
        self.enabled = self.settings.email_enabled
        self._ses_client = ses_client

    @property
    def ses_client(self) -> Any:
        if self._ses_client is None:
            self._ses_client = create_aws_client(
                "ses",
                region_name=self.settings.ses_region or self.settings.aws_region,
            )
        return self._ses_client

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> Optional[str]:
        """
        Send an email

        Args:
            to: Recipient email address
            subject: Email subject
            html_body: HTML part
            text_body: Plain text part

        Returns:
            SES message ID, or None when sending is disabled

        Raises:
            EmailDeliveryError: If SES rejects the message
        """
        if not self.enabled:
            logger.info("email_skipped_disabled", recipient=to, subject=subject)
            return None

        request = {
            "Source": self.settings.email_sender,
            "Destination": {"ToAddresses": [to]},
            "Message": {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": text_body, "Charset": "UTF-8"},
                    "Html": {"Data": html_body, "Charset": "UTF-8"},
                },
            },
        }

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, partial(self.ses_client.send_email, **request))
        except (ClientError, BotoCoreError) as e:
            logger.error("email_send_failed", recipient=to, subject=subject, error=str(e))
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        message_id = response.get("MessageId")
        logger.info("email_sent", recipient=to, subject=subject, message_id=message_id)
        return message_id
