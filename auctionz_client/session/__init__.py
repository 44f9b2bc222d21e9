"""
Session lifecycle package for the AuctionZ session client.

This package contains session validation against the server, the lifecycle
orchestrator that schedules it, and the logout service.
"""
