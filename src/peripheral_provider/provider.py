"""
Provider entry point.

The provider is configured once at host startup with an explicit
configuration object. Configuration mints the bearer credential, builds the
runner API client, and hands that client to every resource.
"""

import ssl
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from .controllers.runner_resource import GitLabRunnerResource
from .models.diagnostics import Diagnostics
from .models.runner import ProviderConfiguration
from .utils.runner_client import RunnerClient, RunnerRequestError, Transport
from .utils.security import BearerTokenEditor, SecurityError, TokenSigner


@dataclass(frozen=True)
class ProviderConfigureResult:
    """Client shared with resources, or None when configuration failed."""

    client: Optional[RunnerClient]
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


class PeripheralProvider:
    """
    Peripheral provider.

    ``version`` is the release version, "dev" for local builds and "test"
    under test.
    """

    TYPE_NAME = "peripheral"

    def __init__(self,
                 version: str = "dev",
                 transport: Optional[Transport] = None,
                 logger: Any = None) -> None:
        self.version = version
        self.transport = transport
        self.client: Optional[RunnerClient] = None
        self.logger = (logger or structlog.get_logger()).bind(component="provider")

    def metadata(self) -> Dict[str, str]:
        return {"type_name": self.TYPE_NAME, "version": self.version}

    def configure(self, config: ProviderConfiguration) -> ProviderConfigureResult:
        """
        Build the authenticated API client from configuration.

        Args:
            config: Validated provider configuration

        Returns:
            The configured client and any diagnostics
        """
        diagnostics = Diagnostics()

        try:
            signer = TokenSigner(
                config.token.get_secret_value(),
                issuer=config.issuer,
                ttl=timedelta(seconds=config.token_ttl_seconds),
            )
            # Fail at startup rather than on the first request.
            signer.sign()
        except SecurityError as e:
            diagnostics.add_error("Token Encoding Error", f"Failed to encode JWT token: {e}")
            return ProviderConfigureResult(client=None, diagnostics=diagnostics)

        try:
            verify = self._build_tls_verify(config)
        except OSError as e:
            diagnostics.add_error("TLS Setup Error", f"Failed to load CA certificate: {e}")
            return ProviderConfigureResult(client=None, diagnostics=diagnostics)

        try:
            client = RunnerClient(
                config.endpoint,
                transport=self.transport,
                request_editors=[BearerTokenEditor(signer)],
                timeout=config.timeout_seconds,
                verify=verify,
                logger=self.logger,
            )
        except RunnerRequestError as e:
            diagnostics.add_error("Client Setup Error", f"Failed to set up client: {e}")
            return ProviderConfigureResult(client=None, diagnostics=diagnostics)

        self.client = client
        self.logger.info("Provider configured", version=self.version, **config.summary())
        return ProviderConfigureResult(client=client, diagnostics=diagnostics)

    def resources(self) -> List[Callable[[], GitLabRunnerResource]]:
        return [GitLabRunnerResource]

    def new_resource(self) -> GitLabRunnerResource:
        """Create a runner resource bound to the configured client."""
        resource = GitLabRunnerResource(logger=self.logger)
        resource.configure(self.client)
        return resource

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    def _build_tls_verify(self, config: ProviderConfiguration) -> Any:
        if not config.tls_verify:
            self.logger.warning("TLS verification disabled - not recommended for production")
            return False

        ssl_context = ssl.create_default_context()
        if config.ca_cert_path:
            ssl_context.load_verify_locations(config.ca_cert_path)
        return ssl_context
