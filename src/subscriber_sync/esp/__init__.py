"""
ESP connector contract, typed records and registry
"""
from .base import EspConnector
from .records import Publication, SubscriberRecord
from .registry import ConnectorRegistry, get_connector_registry

__all__ = [
    "EspConnector",
    "Publication",
    "SubscriberRecord",
    "ConnectorRegistry",
    "get_connector_registry",
]
