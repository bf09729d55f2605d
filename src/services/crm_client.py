"""
CRM API Client

Read-only calls to the upstream CRM used to enrich sparse webhook payloads.
Tokens are never logged.
"""

import httpx
from dataclasses import dataclass
from typing import Optional

from src.config import get_settings
from src.errors import TransientError
from src.utils.observability import logger


@dataclass
class EmailContent:
    subject: str
    body: str
    html_body: str


class CrmApiClient:
    """
    Thin httpx wrapper around the upstream CRM REST API.

    Usage:
        crm = CrmApiClient()
        content = await crm.fetch_email(email_message_id, access_token)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self._base_url = (base_url or settings.crm_api_base_url).rstrip("/")
        self._api_version = api_version or settings.crm_api_version
        self._timeout = timeout or settings.crm_api_timeout_seconds
        self._client = client

    async def fetch_email(self, email_message_id: str, access_token: str) -> Optional[EmailContent]:
        """
        Fetch the full body of an email message.

        Args:
            email_message_id: Upstream email message id
            access_token: Tenant OAuth access token

        Returns:
            EmailContent, or None when upstream errors or returns no email

        Raises:
            TransientError: On timeout, so the item is retried with backoff
        """
        url = f"{self._base_url}/conversations/messages/email/{email_message_id}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Version": self._api_version,
            "Accept": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransientError(f"Email fetch for {email_message_id} timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Email fetch for {email_message_id} failed with status {e.response.status_code}",
                extra={"email_message_id": email_message_id}
            )
            return None
        except httpx.HTTPError as e:
            logger.warning(
                f"Email fetch for {email_message_id} failed: {type(e).__name__}",
                extra={"email_message_id": email_message_id}
            )
            return None

        email = response.json().get("emailMessage")
        if not email:
            logger.warning(f"No email data returned for {email_message_id}")
            return None

        return EmailContent(
            subject=email.get("subject") or "No subject",
            body=email.get("body") or "",
            html_body=email.get("htmlBody") or email.get("body") or "",
        )
