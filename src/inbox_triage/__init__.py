"""Inbox Triage: rank unread mail that needs a reply and clear the noise."""

__version__ = "0.1.0"
