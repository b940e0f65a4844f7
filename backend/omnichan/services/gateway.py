import httpx
import logging
from typing import Protocol

from omnichan.exceptions import DeliveryFailed
from omnichan.schemas.facebook import FacebookSendMessageRequest, FacebookSendMessageResponse, FacebookUser

logger = logging.getLogger(__name__)

SENDER_ACTIONS = ("typing_on", "typing_off", "mark_seen")

# Graph API subcode for "message sent outside the 24 hour window"
OUTSIDE_WINDOW_SUBCODE = 2534022


class PlatformGateway(Protocol):
    """Outbound messaging capability the sync engine depends on"""

    async def send_message(self, page_access_token: str, recipient_id: str, text: str) -> str:
        ...

    async def send_sender_action(self, page_access_token: str, recipient_id: str, action: str) -> None:
        ...


def _graph_error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return response.text[:200]
    message = error.get("message", "")
    if error.get("error_subcode") == OUTSIDE_WINDOW_SUBCODE or "outside of allowed window" in message:
        return (
            "Cannot send message: this user hasn't messaged the page in the last 24 hours. "
            "Wait for the user to send a message before replying."
        )
    return message or f"HTTP {response.status_code}"


class FacebookGateway:
    """Messenger Send API client"""

    def __init__(self, graph_url: str, graph_version: str, timeout: float = 10.0):
        self.graph_url = f"{graph_url}/{graph_version}"
        self.timeout = timeout

    async def send_message(self, page_access_token: str, recipient_id: str, text: str) -> str:
        """Send a text message and return the platform message id.

        Raises DeliveryFailed on transport errors, timeouts, non-2xx responses
        or a response without a message id.
        """
        request = FacebookSendMessageRequest(
            recipient=FacebookUser(id=recipient_id),
            message={"text": text},
            messaging_type="RESPONSE",
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.graph_url}/me/messages",
                    params={"access_token": page_access_token},
                    json=request.model_dump(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Facebook send to {recipient_id} failed: {e!r}")
            raise DeliveryFailed(f"Facebook send failed: {e!r}") from e

        if response.status_code >= 400:
            detail = _graph_error_message(response)
            logger.error(f"Facebook API error {response.status_code} sending to {recipient_id}: {detail}")
            raise DeliveryFailed(detail)

        try:
            result = FacebookSendMessageResponse.model_validate(response.json())
        except ValueError as e:
            # pydantic.ValidationError and json decode errors are both ValueErrors
            raise DeliveryFailed("Facebook API returned no message_id") from e

        logger.info(f"Message {result.message_id} sent to Facebook user {recipient_id}")
        return result.message_id

    async def send_sender_action(self, page_access_token: str, recipient_id: str, action: str) -> None:
        """Send a typing indicator or mark-seen. Best effort: failures are logged only."""
        if action not in SENDER_ACTIONS:
            raise ValueError(f"Unknown sender action: {action}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.graph_url}/me/messages",
                    params={"access_token": page_access_token},
                    json={"recipient": {"id": recipient_id}, "sender_action": action},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Sender action {action} for {recipient_id} failed: {e!r}")
