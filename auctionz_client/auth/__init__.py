"""
Authentication package for the AuctionZ session client.

This package contains authentication-related functionality including
durable credential storage, single-flight token refresh, and the
authentication context shared with the UI.
"""
