"""walletbot - Telegram front end for an MPC wallet."""

__version__ = "0.1.0"
