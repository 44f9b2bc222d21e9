"""
Shared package for the AuctionZ session client.

This package contains the data models, abstract interfaces, structured
exceptions and logging configuration used across the client.
"""
