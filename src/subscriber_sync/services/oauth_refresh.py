"""
OAuth refresh gate

Wraps an OAuth-authenticated connector call with a single retry after a token
refresh. The state machine has exactly two states:

    FIRST_ATTEMPT --auth failure--> refresh --> RETRY --any failure--> terminal

so a refreshed token that is rejected again can never trigger a second refresh.
"""
import enum
import logging
from abc import ABC, abstractmethod
from typing import Callable, TypeVar

import httpx
from sqlalchemy.orm import Session

from ..db.models import EspConnection
from ..exceptions import ConnectorError, InvalidCredentialError, ReconnectRequiredError, SyncEngineError
from .encryption_service import EncryptionService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptState(str, enum.Enum):
    """Where a gated call is in its retry budget"""
    FIRST_ATTEMPT = "first_attempt"
    RETRY = "retry"


class TokenRefresher(ABC):
    """
    OAuth credential-exchange collaborator

    Implementations exchange the stored refresh token for a new access token and
    persist the encrypted result on the connection row.
    """

    @abstractmethod
    def refresh_token(self, connection: EspConnection) -> None:
        pass


def is_auth_error(error: Exception) -> bool:
    """True for HTTP 401 or an explicit invalid-token signal"""
    if isinstance(error, InvalidCredentialError):
        return True
    if isinstance(error, ConnectorError):
        return error.remote_status == 401
    # status_code on engine errors is their own HTTP mapping, not the provider's
    if isinstance(error, SyncEngineError):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 401
    if getattr(error, "status_code", None) == 401:
        return True
    response = getattr(error, "response", None)
    if response is not None and getattr(response, "status_code", None) == 401:
        return True
    return "invalid access token" in str(error).lower()


class OAuthRefreshGate:
    """Single-retry-after-refresh policy for OAuth connector calls"""

    def __init__(self, db: Session, encryption: EncryptionService, token_refresher: TokenRefresher):
        self.db = db
        self.encryption = encryption
        self.token_refresher = token_refresher

    def call_with_retry(
        self,
        connection: EspConnection,
        operation: Callable[[str], T],
        access_token: str,
    ) -> T:
        """
        Call operation(access_token), refreshing the token once on an auth failure

        Args:
            connection: OAuth connection the token belongs to
            operation: Connector call taking an access token
            access_token: Current decrypted access token

        Returns:
            The operation result

        Raises:
            ReconnectRequiredError: refresh failed or the refreshed token was rejected
            Exception: any non-auth failure, unmodified
        """
        state = AttemptState.FIRST_ATTEMPT
        token = access_token

        while True:
            try:
                return operation(token)
            except Exception as e:
                if not is_auth_error(e):
                    raise
                if state is AttemptState.RETRY:
                    logger.warning(
                        f"Refreshed token rejected for connection {connection.id}; reconnect required"
                    )
                    raise ReconnectRequiredError(
                        f"Token refresh failed: {e}. Please reconnect your account.",
                        details={"esp_connection_id": connection.id},
                    ) from e

                logger.info(f"Access token rejected for connection {connection.id}, refreshing")
                token = self._refresh_and_reload(connection)
                state = AttemptState.RETRY

    def _refresh_and_reload(self, connection: EspConnection) -> str:
        """Refresh the token, reload the stored credential and decrypt it"""
        try:
            self.token_refresher.refresh_token(connection)
            # Commit the refreshed credential, then reload the row from the store
            self.db.commit()
            refreshed = self.db.get(EspConnection, connection.id)
            if refreshed is None or not refreshed.encrypted_access_token:
                raise ValueError("connection not found or token missing after refresh")
            return self.encryption.decrypt(refreshed.encrypted_access_token)
        except ReconnectRequiredError:
            raise
        except Exception as e:
            logger.error(f"Token refresh failed for connection {connection.id}: {e}")
            raise ReconnectRequiredError(
                f"Token refresh failed: {e}. Please reconnect your account.",
                details={"esp_connection_id": connection.id},
            ) from e
