"""
ESP Connector - abstract interface every email service provider adapter implements
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .records import Publication, SubscriberRecord


class EspConnector(ABC):
    """
    Abstract base class for ESP connectors

    Connectors authenticate with a static API key, an OAuth access token, or both.
    OAuth methods are optional: connectors that support them set `supports_oauth`
    and override the *_with_oauth methods.

    Connectors raise the ConnectorError family from `subscriber_sync.exceptions`
    (InvalidCredentialError, ListNotFoundError, RateLimitedError,
    ProviderServerError, ProviderNetworkError) and paginate internally.
    """

    supports_oauth: bool = False

    @abstractmethod
    def validate_api_key(self, api_key: str, publication_id: Optional[str] = None) -> bool:
        """Check the API key (optionally against one publication)"""
        pass

    @abstractmethod
    def fetch_publications(self, api_key: str) -> List[Publication]:
        """List every publication visible to the API key"""
        pass

    @abstractmethod
    def fetch_subscribers(self, api_key: str, publication_id: str) -> List[SubscriberRecord]:
        """Fetch all subscribers of one publication"""
        pass

    @abstractmethod
    def get_subscriber_count(self, api_key: str, publication_id: str) -> int:
        """Lightweight subscriber count for one publication"""
        pass

    def validate_access_token(self, access_token: str) -> bool:
        raise NotImplementedError(f"{type(self).__name__} does not support OAuth")

    def fetch_publications_with_oauth(self, access_token: str) -> List[Publication]:
        raise NotImplementedError(f"{type(self).__name__} does not support OAuth")

    def fetch_subscribers_with_oauth(self, access_token: str, publication_id: str) -> List[SubscriberRecord]:
        raise NotImplementedError(f"{type(self).__name__} does not support OAuth")

    def get_subscriber_count_with_oauth(self, access_token: str, publication_id: str) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not support OAuth")
