"""
Test suite for the order core.

Markers:
- unit: pure functions and single services against the in-memory DB
- integration: multi-service flows
- api: HTTP routes through the ASGI app with a fake Stripe
"""
