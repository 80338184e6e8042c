"""
Connector registry - maps an ESP type to its connector implementation
"""
import logging
from typing import Dict, Iterable, Optional, Union

from ..db.models import EspType
from ..exceptions import ConfigurationError
from .base import EspConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """
    Registry populated at startup with one connector per ESP type

    New providers are added by registering them; the sync service never
    branches on the ESP type itself.
    """

    def __init__(self, connectors: Optional[Dict[Union[EspType, str], EspConnector]] = None):
        self._connectors: Dict[str, EspConnector] = {}
        for esp_type, connector in (connectors or {}).items():
            self.register(esp_type, connector)

    @staticmethod
    def _key(esp_type: Union[EspType, str]) -> str:
        return esp_type.value if isinstance(esp_type, EspType) else str(esp_type)

    def register(self, esp_type: Union[EspType, str], connector: EspConnector) -> None:
        """Register (or replace) the connector for an ESP type"""
        key = self._key(esp_type)
        if key in self._connectors:
            logger.warning(f"Replacing connector registered for ESP type {key}")
        self._connectors[key] = connector

    def get(self, esp_type: Union[EspType, str]) -> EspConnector:
        """
        Get the connector for an ESP type

        Raises:
            ConfigurationError: no connector is registered for the type
        """
        key = self._key(esp_type)
        connector = self._connectors.get(key)
        if connector is None:
            raise ConfigurationError(f"Unsupported ESP type: {key}", details={"esp_type": key})
        return connector

    def __contains__(self, esp_type) -> bool:
        return self._key(esp_type) in self._connectors

    def registered_types(self) -> Iterable[str]:
        return sorted(self._connectors)


# Global registry instance
_registry: Optional[ConnectorRegistry] = None


def get_connector_registry() -> ConnectorRegistry:
    """Get or create the process-wide connector registry"""
    global _registry
    if _registry is None:
        _registry = ConnectorRegistry()
    return _registry
