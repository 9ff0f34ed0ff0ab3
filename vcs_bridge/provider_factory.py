# vcs_bridge/provider_factory.py

"""
Builder for provider clients.

``ClientBuilder`` selects the adapter class registered for a provider and
hands it the connection details, logger and retry policy collected through
its fluent setters.
"""

import logging

from .base import VcsClient
from .config.connection import VcsConnectionConfig
from .error_handling.core import RetryConfig
from .models import ConnectionInfo, VcsProvider
from .providers.bitbucket_cloud.bitbucket_cloud_provider import BitbucketCloudProvider
from .providers.bitbucket_server.bitbucket_server_provider import BitbucketServerProvider
from .providers.github.github_provider import GitHubProvider
from .providers.gitlab.gitlab_provider import GitLabProvider
from .utils import validate_parameters_not_blank

logger = logging.getLogger(__name__)

_provider_registry: dict[VcsProvider, type[VcsClient]] = {}


def register_provider(provider: VcsProvider, provider_class: type[VcsClient]) -> None:
    """Register the client class built for a provider."""
    _provider_registry[provider] = provider_class
    logger.debug(f"Registered provider: {provider.value}")


def registered_providers() -> list[VcsProvider]:
    return list(_provider_registry)


register_provider(VcsProvider.GITHUB, GitHubProvider)
register_provider(VcsProvider.GITLAB, GitLabProvider)
register_provider(VcsProvider.BITBUCKET_SERVER, BitbucketServerProvider)
register_provider(VcsProvider.BITBUCKET_CLOUD, BitbucketCloudProvider)


class ClientBuilder:
    """Collects connection settings and builds the client for one provider."""

    def __init__(self, provider: VcsProvider | str) -> None:
        self.provider = VcsProvider(provider)
        self._api_endpoint = ""
        self._username = ""
        self._token = ""
        self._project = ""
        self._logger: logging.Logger | None = None
        self._retry_config: RetryConfig | None = None
        self._request_timeout = 30.0

    def api_endpoint(self, api_endpoint: str) -> "ClientBuilder":
        self._api_endpoint = api_endpoint
        return self

    def username(self, username: str) -> "ClientBuilder":
        self._username = username
        return self

    def token(self, token: str) -> "ClientBuilder":
        self._token = token
        return self

    def project(self, project: str) -> "ClientBuilder":
        self._project = project
        return self

    def logger(self, logger: logging.Logger) -> "ClientBuilder":
        self._logger = logger
        return self

    def retry_config(self, retry_config: RetryConfig) -> "ClientBuilder":
        self._retry_config = retry_config
        return self

    def request_timeout(self, seconds: float) -> "ClientBuilder":
        self._request_timeout = seconds
        return self

    def build(self) -> VcsClient:
        """
        Build the client for the configured provider.

        Raises:
            ValidationError: If Bitbucket Server is missing its API endpoint
            ValueError: If no client class is registered for the provider
        """
        if self.provider == VcsProvider.BITBUCKET_SERVER:
            validate_parameters_not_blank({"api endpoint": self._api_endpoint})

        provider_class = _provider_registry.get(self.provider)
        if provider_class is None:
            raise ValueError(f"Unsupported provider type: {self.provider.value}")

        if self._api_endpoint:
            logger.info(f"Using {self.provider.display_name} API endpoint: {self._api_endpoint}")
        connection = ConnectionInfo(
            api_endpoint=self._api_endpoint,
            username=self._username,
            token=self._token,
            project=self._project,
        )
        return provider_class(
            connection,
            logger=self._logger,
            retry_config=self._retry_config,
            request_timeout=self._request_timeout,
        )

    @classmethod
    def from_config(
        cls, config: VcsConnectionConfig, logger: logging.Logger | None = None
    ) -> VcsClient:
        """
        Build a client from a validated connection configuration.

        The configured log level is applied to the client's logger, which is
        ``logger`` when given and the adapter module's logger otherwise.
        """
        connection = config.to_connection_info()
        builder = (
            cls(config.provider)
            .api_endpoint(connection.api_endpoint)
            .username(connection.username)
            .token(connection.token)
            .project(connection.project)
            .retry_config(config.retry.to_retry_config())
            .request_timeout(config.request_timeout_seconds)
        )
        if logger is not None:
            builder.logger(logger)
        client = builder.build()
        client.logger.setLevel(config.log_level_value)
        return client
