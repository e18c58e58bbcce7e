"""
Provider adapter for Africa's Talking.

The flow engines and completion pipeline only see `ProviderAdapter`:
send an SMS, place a call, send airtime. `build_provider` picks the live
Africa's Talking client when an API key is configured, and the mock
(log and pretend) otherwise.

Sandbox hosts are used when the username is "sandbox":
    https://api.sandbox.africastalking.com/version1/messaging
    https://voice.sandbox.africastalking.com/call
    https://api.sandbox.africastalking.com/version1/airtime/send
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from soundsteps.config import Settings
from soundsteps.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderResult(BaseModel):
    """Outcome of one outbound action."""
    success: bool = True
    provider: str
    action: str                      # sms, call, airtime
    to: str
    reference: Optional[str] = None  # message id / call session id / request id
    mock: bool = False
    raw: Dict[str, Any] = Field(default_factory=dict)


class ProviderAdapter(ABC):
    name = "provider"

    @abstractmethod
    async def send_text(self, to: str, body: str) -> ProviderResult:
        """Send an SMS."""

    @abstractmethod
    async def place_call(self, to: str, from_: Optional[str] = None) -> ProviderResult:
        """Place an outbound voice call."""

    @abstractmethod
    async def send_airtime(self, to: str, amount: int, currency: str) -> ProviderResult:
        """Top up a phone with airtime."""


# =============================================================================
# MOCK PROVIDER
# =============================================================================

class MockProvider(ProviderAdapter):
    """
    Deterministic stand-in used when no credentials are configured.

    Every action is logged and kept in `outbox`; references count up per
    action (mock-sms-1, mock-sms-2, ...).
    """

    name = "mock"

    def __init__(self):
        self.outbox: List[ProviderResult] = []
        self._counters: Dict[str, int] = {}

    def _record(self, action: str, to: str, **raw: Any) -> ProviderResult:
        self._counters[action] = self._counters.get(action, 0) + 1
        result = ProviderResult(
            provider=self.name,
            action=action,
            to=to,
            reference=f"mock-{action}-{self._counters[action]}",
            mock=True,
            raw=raw,
        )
        self.outbox.append(result)
        return result

    async def send_text(self, to: str, body: str) -> ProviderResult:
        logger.info("[Provider] Mock SMS to %s: %s", to, body[:50])
        return self._record("sms", to, message=body)

    async def place_call(self, to: str, from_: Optional[str] = None) -> ProviderResult:
        logger.info("[Provider] Mock call to %s from %s", to, from_)
        return self._record("call", to, callFrom=from_)

    async def send_airtime(self, to: str, amount: int, currency: str) -> ProviderResult:
        logger.info("[Provider] Mock airtime to %s: %s %s", to, currency, amount)
        return self._record("airtime", to, amount=amount, currencyCode=currency)

    def messages_to(self, phone: str) -> List[str]:
        """SMS bodies sent to a phone, in order."""
        return [r.raw["message"] for r in self.outbox if r.action == "sms" and r.to == phone]


# =============================================================================
# AFRICA'S TALKING
# =============================================================================

class AfricasTalkingProvider(ProviderAdapter):
    """Africa's Talking REST integration over httpx."""

    name = "africastalking"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.username = settings.at_username
        self.api_key = settings.at_api_key
        self.sender_id = settings.at_sender_id
        self.voice_number = settings.at_voice_number
        self.timeout = settings.provider_timeout
        self.transport = transport

        if self.username == "sandbox":
            self.sms_url = "https://api.sandbox.africastalking.com/version1/messaging"
            self.voice_url = "https://voice.sandbox.africastalking.com/call"
            self.airtime_url = "https://api.sandbox.africastalking.com/version1/airtime/send"
        else:
            self.sms_url = "https://api.africastalking.com/version1/messaging"
            self.voice_url = "https://voice.africastalking.com/call"
            self.airtime_url = "https://api.africastalking.com/version1/airtime/send"

    def _chunk_message(self, text: str, limit: int = 160) -> List[str]:
        """
        Split long messages into SMS-safe chunks.

        Note: Using 160 for single SMS (GSM-7 encoding).
        Templates avoid emojis to stay in GSM-7 (not Unicode).
        """
        chunks = []

        while len(text) > limit:
            # Find last space before limit
            break_point = text.rfind(' ', 0, limit)
            if break_point == -1:
                break_point = limit

            chunks.append(text[:break_point].strip())
            text = text[break_point:].strip()

        if text:
            chunks.append(text)

        return chunks

    async def _post(self, url: str, data: Dict[str, str]) -> Dict[str, Any]:
        headers = {
            "apiKey": self.api_key,
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json"
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=headers, data=data)
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to {url} failed: {e}", self.name) from e

        if response.status_code not in (200, 201):
            raise ProviderError(
                f"Africa's Talking returned {response.status_code}: {response.text[:200]}",
                self.name,
                response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Unreadable response from {url}: {response.text[:200]}",
                self.name,
                response.status_code
            ) from e

    async def send_text(self, to: str, body: str) -> ProviderResult:
        """Send SMS, one request per 160-character chunk."""
        references = []
        responses = []
        for chunk_text in self._chunk_message(body):
            data = {"username": self.username, "to": to, "message": chunk_text}
            if self.sender_id:
                data["from"] = self.sender_id
            payload = await self._post(self.sms_url, data)
            recipients = payload.get("SMSMessageData", {}).get("Recipients", [])
            if not recipients:
                message = payload.get("SMSMessageData", {}).get("Message", "no recipients")
                raise ProviderError(f"SMS to {to} rejected: {message}", self.name)
            for recipient in recipients:
                if recipient.get("status") != "Success":
                    raise ProviderError(
                        f"SMS to {to} failed: {recipient.get('status')}",
                        self.name,
                        recipient.get("statusCode")
                    )
                references.append(recipient.get("messageId"))
            responses.append(payload)

        logger.info("[Provider] SMS sent to %s (%d part(s))", to, len(references))
        return ProviderResult(
            provider=self.name,
            action="sms",
            to=to,
            reference=",".join(r for r in references if r),
            raw={"responses": responses},
        )

    async def place_call(self, to: str, from_: Optional[str] = None) -> ProviderResult:
        caller = from_ or self.voice_number
        if not caller:
            raise ProviderError("No voice number configured for outbound calls", self.name)
        payload = await self._post(
            self.voice_url,
            {"username": self.username, "from": caller, "to": to}
        )
        error = payload.get("errorMessage")
        if error and error != "None":
            raise ProviderError(f"Call to {to} failed: {error}", self.name)
        entries = payload.get("entries", [])
        if entries and entries[0].get("status") not in ("Queued", "Success"):
            raise ProviderError(f"Call to {to} failed: {entries[0].get('status')}", self.name)

        logger.info("[Provider] Call queued to %s", to)
        return ProviderResult(
            provider=self.name,
            action="call",
            to=to,
            reference=entries[0].get("sessionId") if entries else None,
            raw=payload,
        )

    async def send_airtime(self, to: str, amount: int, currency: str) -> ProviderResult:
        recipients = [{"phoneNumber": to, "amount": f"{currency} {amount}"}]
        payload = await self._post(
            self.airtime_url,
            {"username": self.username, "recipients": json.dumps(recipients)}
        )
        error = payload.get("errorMessage")
        if error and error != "None":
            raise ProviderError(f"Airtime to {to} failed: {error}", self.name)
        responses = payload.get("responses", [])
        if not responses or responses[0].get("status") not in ("Sent", "Success"):
            status = responses[0].get("status") if responses else "no response"
            raise ProviderError(f"Airtime to {to} failed: {status}", self.name)

        logger.info("[Provider] Airtime sent to %s: %s %s", to, currency, amount)
        return ProviderResult(
            provider=self.name,
            action="airtime",
            to=to,
            reference=responses[0].get("requestId"),
            raw=payload,
        )


def build_provider(settings: Settings) -> ProviderAdapter:
    """Live client when credentials are present, mock otherwise."""
    if settings.at_api_key:
        logger.info("[Provider] Africa's Talking client initialized (%s)", settings.at_username)
        return AfricasTalkingProvider(settings)
    logger.warning("[Provider] Africa's Talking credentials not configured - using mock mode")
    return MockProvider()
