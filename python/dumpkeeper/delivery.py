"""
Delivery agent: push a finished artifact to a Telegram chat.

Outcomes:
- Skipped: bot token or chat id not configured; no network I/O happens.
- Uploaded: the Bot API answered with ``"ok": true``.
- Failed: anything else. API rejections and transport failures are logged
  under different events but are treated the same by retention.

There is no retry. A failed artifact stays on disk until age-based
eviction removes it; the next cycle delivers a new artifact instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from dumpkeeper.exceptions import DeliveryError
from dumpkeeper.logging import get_logger
from dumpkeeper.models import ArtifactState, DeliveryResult

if TYPE_CHECKING:
    from dumpkeeper.capabilities import CapabilityProvider
    from dumpkeeper.config import DeliveryConfig
    from dumpkeeper.models import BackupArtifact

logger = get_logger(__name__)


class DeliveryAgent:
    """Uploads artifacts with the Bot API ``sendDocument`` method."""

    def __init__(
        self,
        config: DeliveryConfig,
        capabilities: CapabilityProvider,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the delivery agent.

        Args:
            config: Delivery section of the application config.
            capabilities: Provider used to ensure the HTTP client is present.
            client: HTTP client to reuse; a short-lived one is created per
                upload when omitted.
        """
        self._config = config
        self._capabilities = capabilities
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def endpoint(self) -> str:
        """sendDocument URL with the token masked, for logs."""
        return f"{self._config.api_base.rstrip('/')}/bot***/sendDocument"

    def _url(self) -> str:
        assert self._config.bot_token is not None
        token = self._config.bot_token.get_secret_value()
        return f"{self._config.api_base.rstrip('/')}/bot{token}/sendDocument"

    def build_form(self, label: str) -> dict[str, str]:
        """Multipart form fields other than the document itself."""
        assert self._config.chat_id is not None
        form = {
            "chat_id": self._config.chat_id,
            "caption": f"{self._config.caption_prefix} {label}",
        }
        if self._config.thread_id:
            form["message_thread_id"] = self._config.thread_id
        return form

    def deliver(self, artifact: BackupArtifact) -> DeliveryResult:
        """
        Attempt one delivery of ``artifact``.

        Returns:
            DeliveryResult tagged Uploaded, Skipped or Failed.

        Raises:
            DependencyError: The HTTP client capability is unavailable.
        """
        log = logger.bind(chat_id=self._config.chat_id)
        if not self.enabled:
            log.info(
                "delivery_skipped",
                reason="bot token and chat id must both be configured",
            )
            return DeliveryResult.skipped("delivery credentials not configured")

        self._capabilities.ensure("http-client")
        artifact.state = ArtifactState.DELIVERY_ATTEMPTED
        log.info("delivery_started", path=str(artifact.path), size_bytes=artifact.size_bytes)

        try:
            response = self._post(artifact)
        except httpx.TimeoutException as e:
            error = DeliveryError.timeout(self.endpoint, self._config.timeout_seconds)
            error.cause = e
            log.error("delivery_network_error", error=str(error), reason="timeout")
            return DeliveryResult.failed(error)
        except (httpx.TransportError, OSError) as e:
            error = DeliveryError.network_failed(self.endpoint, self._redact(e))
            error.cause = e
            log.error("delivery_network_error", error=str(error), reason=self._redact(e))
            return DeliveryResult.failed(error)

        body = _parse_body(response)
        if body.get("ok") is True:
            log.info("delivery_uploaded", path=str(artifact.path))
            return DeliveryResult.uploaded(body)

        description = body.get("description")
        if isinstance(description, str) and description:
            log.error(
                "delivery_rejected",
                description=description,
                status_code=response.status_code,
            )
        else:
            description = None
            log.error(
                "delivery_rejected",
                description="unknown error",
                status_code=response.status_code,
            )
        return DeliveryResult.failed(
            DeliveryError.rejected(description, response.status_code), body
        )

    def _redact(self, error: Exception) -> str:
        """Error text with the bot token masked; httpx messages can embed the URL."""
        text = str(error) or type(error).__name__
        if self._config.bot_token is not None:
            text = text.replace(self._config.bot_token.get_secret_value(), "***")
        return text

    def _post(self, artifact: BackupArtifact) -> httpx.Response:
        form = self.build_form(artifact.label)
        with artifact.path.open("rb") as document:
            files = {"document": (artifact.path.name, document, "application/zip")}
            if self._client is not None:
                return self._client.post(
                    self._url(), data=form, files=files, timeout=self._config.timeout_seconds
                )
            with httpx.Client(timeout=self._config.timeout_seconds) as client:
                return client.post(self._url(), data=form, files=files)


def _parse_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}

