"""
AuctionZ session client.

Keeps a bearer-token session valid against the AuctionZ API: credential
storage, token refresh, session validation, lifecycle orchestration and logout.
"""

__version__ = "1.0.0"
