"""Identity context: the bearer credential and the selected workspace/wallet."""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """Who the bot is acting as.

    One instance is shared by the running bot; tests create as many as they
    need. Invariant: ``is_authenticated()`` is true exactly when an access
    token is held.
    """

    access_token: Optional[str] = None
    workspace_id: Optional[str] = None
    wallet_id: Optional[str] = None

    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def set_access_token(self, token: str) -> None:
        self.access_token = token

    def set_workspace(self, workspace_id: str) -> None:
        self.workspace_id = workspace_id

    def set_wallet(self, wallet_id: str) -> None:
        self.wallet_id = wallet_id

    def logout_and_clear(self) -> None:
        """Forget token, workspace and wallet. Safe to call repeatedly."""
        if self.access_token is not None:
            logger.info("Clearing authenticated identity")
        self.access_token = None
        self.workspace_id = None
        self.wallet_id = None
