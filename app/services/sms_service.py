"""
Great Pearl Coffee Finance - SMS Service

Sends transactional SMS (withdrawal approval codes) through the HTTP SMS
gateway. Without an API key configured, messages are logged instead of sent.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import settings
from app.utils.error_handling import SMSServiceException

logger = logging.getLogger(__name__)


@dataclass
class SmsResult:
    """Outcome of a send."""
    success: bool
    phone: str
    message_id: Optional[str] = None
    simulated: bool = False


def format_phone(phone: str, country_code: Optional[str] = None) -> str:
    """
    Normalise a local or international number to <country code><number>.

    "0772 123456", "+256772123456" and "772123456" all become "256772123456".
    """
    country_code = country_code or settings.sms_country_code
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise SMSServiceException(f"Invalid phone number: '{phone}'")
    if digits.startswith(country_code):
        return digits
    if digits.startswith("0"):
        digits = digits[1:]
    return f"{country_code}{digits}"


def withdrawal_code_message(name: str, code: str, ttl_minutes: Optional[int] = None) -> str:
    ttl_minutes = ttl_minutes or settings.withdrawal_code_ttl_minutes
    return (
        f"Hello {name}, your Great Pearl Finance withdrawal approval code is: {code}. "
        f"Valid for {ttl_minutes} minutes. Do not share this code."
    )


class SmsService:
    """Service for sending SMS through the configured gateway."""

    TIMEOUT = settings.sms_timeout_seconds

    def __init__(self):
        self.api_url = settings.sms_api_url
        self.api_key = settings.sms_api_key
        self.sender_id = settings.sms_sender_id

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def send(self, phone: str, message: str) -> SmsResult:
        """
        Send one SMS.

        Raises:
            SMSServiceException: the gateway refused the message or was unreachable
        """
        to = format_phone(phone)

        if not settings.sms_enabled:
            logger.info(f"[SMS MOCK] To: {to} | {message}")
            return SmsResult(success=True, phone=to, simulated=True)

        payload = {
            "to": to,
            "message": message,
            "sender_id": self.sender_id,
        }

        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                response = await client.post(
                    self.api_url,
                    headers=self._get_headers(),
                    json=payload,
                )
        except httpx.TimeoutException as e:
            raise SMSServiceException("Request timeout - SMS gateway did not respond", original_error=e)
        except httpx.RequestError as e:
            raise SMSServiceException(f"Network error: {str(e)}", original_error=e)

        if response.status_code not in (200, 201, 202):
            logger.error(f"SMS gateway returned {response.status_code} for {to}: {response.text[:200]}")
            raise SMSServiceException(f"Gateway returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        logger.info(f"SMS sent to {to}")
        return SmsResult(
            success=True,
            phone=to,
            message_id=str(data.get("message_id") or data.get("id") or "") or None,
        )
