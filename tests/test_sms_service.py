"""
Great Pearl Coffee Finance - SMS Service Tests

Phone normalisation and the HTTP SMS gateway client.
"""

import json

import httpx
import pytest
import respx

from app.config import settings
from app.services.sms_service import SmsService, format_phone, withdrawal_code_message
from app.utils.error_handling import SMSServiceException


class TestFormatPhone:

    @pytest.mark.parametrize("raw", ["0772 123456", "+256772123456", "772123456", "256-772-123-456"])
    def test_local_and_international_forms(self, raw):
        assert format_phone(raw) == "256772123456"

    def test_other_country_code(self):
        assert format_phone("0712345678", country_code="254") == "254712345678"

    def test_empty_number_is_rejected(self):
        with pytest.raises(SMSServiceException):
            format_phone("not a number")


def test_code_message_mentions_code_and_lifetime():
    message = withdrawal_code_message("Denis", "123456", ttl_minutes=5)
    assert "123456" in message
    assert "5 minutes" in message
    assert message.startswith("Hello Denis")


class TestSmsService:

    @pytest.mark.asyncio
    async def test_without_api_key_messages_are_logged(self, monkeypatch):
        monkeypatch.setattr(settings, "sms_api_key", "")

        result = await SmsService().send("0772123456", "hello")

        assert result.success is True
        assert result.simulated is True
        assert result.phone == "256772123456"

    @pytest.mark.asyncio
    @respx.mock
    async def test_gateway_receives_normalised_number(self, monkeypatch):
        monkeypatch.setattr(settings, "sms_api_key", "test-key")
        route = respx.post(settings.sms_api_url).mock(
            return_value=httpx.Response(200, json={"message_id": "msg-42"})
        )

        result = await SmsService().send("0772123456", "Your code is 123456")

        assert result.success is True
        assert result.message_id == "msg-42"
        sent = json.loads(route.calls.last.request.content)
        assert sent["to"] == "256772123456"
        assert sent["sender_id"] == settings.sms_sender_id
        assert route.calls.last.request.headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    @respx.mock
    async def test_gateway_error_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "sms_api_key", "test-key")
        respx.post(settings.sms_api_url).mock(return_value=httpx.Response(500, text="down"))

        with pytest.raises(SMSServiceException):
            await SmsService().send("0772123456", "hello")

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_gateway_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "sms_api_key", "test-key")
        respx.post(settings.sms_api_url).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(SMSServiceException):
            await SmsService().send("0772123456", "hello")
