"""
Twilio REST client for SMS delivery and SMS body formatting.
"""
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.date_utils import format_friendly_date
from app.logger import get_logger
from app.models import NotificationType

logger = get_logger(__name__)


@dataclass
class SMSResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SMSClient:
    """
    Client for the Twilio Messages REST API.
    `send_sms` never raises; failures come back as an unsuccessful SMSResult.
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base: Optional[str] = None,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_phone_number
        self.api_base = (api_base or settings.twilio_api_base).rstrip('/')

        self._auth = HTTPBasicAuth(self.account_sid, self.auth_token) if self.is_configured else None

        if not self.is_configured:
            logger.warning("Twilio credentials not configured. SMS notifications will be disabled.")

    @property
    def is_configured(self) -> bool:
        """Check if the client is properly configured."""
        return bool(self.account_sid and self.auth_token and self.from_number)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _post_message(self, to: str, body: str) -> Dict[str, Any]:
        url = f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"
        response = requests.post(
            url,
            data={"To": to, "From": self.from_number, "Body": body},
            auth=self._auth,
            timeout=30
        )
        response.raise_for_status()
        return response.json()

    def send_sms(self, to: str, body: str) -> SMSResult:
        """
        Send a single SMS.

        Args:
            to: Destination phone number in E.164 format
            body: Message text

        Returns:
            SMSResult with the provider message id or the error
        """
        if not self.is_configured:
            return SMSResult(success=False, error="SMS provider not configured")

        try:
            data = self._post_message(to, body)
            message_id = data.get("sid")
            logger.info(f"SMS sent successfully: {message_id}")
            return SMSResult(success=True, message_id=message_id)
        except requests.HTTPError as e:
            detail = e.response.text[:200] if e.response is not None else str(e)
            logger.error(f"SMS sending failed with HTTP error: {detail}")
            return SMSResult(success=False, error=detail)
        except Exception as e:
            logger.error(f"SMS sending failed: {e}")
            return SMSResult(success=False, error=str(e))


def format_sms_message(notification_type: NotificationType, data: Dict[str, Any]) -> str:
    """
    Render the SMS body for a notification.

    Args:
        notification_type: Type of the notification being delivered
        data: Template values (title, due_date, user_name, points, reason, is_bonus)
    """
    title = data.get("title") or "Update from FamilyTasks"

    if notification_type in (NotificationType.TASK_ASSIGNED, NotificationType.BONUS_TASK_AVAILABLE):
        if data.get("is_bonus") or notification_type == NotificationType.BONUS_TASK_AVAILABLE:
            return (
                f"New bonus task available - {title} - {data.get('points', 0)} points. "
                f"Open app: {settings.app_base_url}/dashboard"
            )
        due = data.get("due_date")
        if isinstance(due, str):
            due = date.fromisoformat(due)
        return f"New task: {title} - Due: {format_friendly_date(due)}"

    if notification_type == NotificationType.BONUS_TASK_SELF_ASSIGNED:
        return f"{data.get('user_name', 'Someone')} claimed bonus task: {title}"
    if notification_type == NotificationType.TASK_COMPLETED:
        return f"{data.get('user_name', 'Someone')} completed: {title}"
    if notification_type == NotificationType.TASK_VERIFIED:
        return f"Task verified: {title} - {data.get('points', 0)} points earned"
    if notification_type == NotificationType.TASK_DECLINED:
        return f"Task declined: {title} - Try again"
    if notification_type == NotificationType.TASK_DELETED:
        return f"Task deleted: {title}"
    if notification_type == NotificationType.POINTS_EARNED:
        return f"{data.get('points', 0)} points earned: {title}"
    if notification_type == NotificationType.POINTS_DEDUCTED:
        return f"{data.get('points', 0)} points deducted: {data.get('reason') or title}"

    return f"Notification: {title}"


@lru_cache()
def get_sms_client() -> SMSClient:
    """Get or create the SMS client singleton."""
    return SMSClient()
