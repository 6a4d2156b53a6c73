"""
Orgboard client

Async HTTP client for the Orgboard API and a per-session mirror of the
organizations, memberships and invitations it returns.
"""

__version__ = "0.1.0"
