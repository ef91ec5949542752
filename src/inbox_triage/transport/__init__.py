"""Mail provider transports.

Two interchangeable backends implement the same MailTransport contract:
- GraphTransport: Microsoft Graph REST/JSON API with bearer tokens
- EwsTransport: Exchange Web Services SOAP/XML API

Usage:
    from inbox_triage.transport import create_transport

    transport = create_transport(config.transport)
    messages = await transport.fetch_messages(session, days_back=7)
    result = await transport.mark_as_read(session, [m.id for m in messages])
"""

from inbox_triage.transport.base import MailTransport, create_transport, since_timestamp
from inbox_triage.transport.ews import EwsTransport
from inbox_triage.transport.graph import GraphTransport
from inbox_triage.transport.graph_client import GraphClient

__all__ = [
    "EwsTransport",
    "GraphClient",
    "GraphTransport",
    "MailTransport",
    "create_transport",
    "since_timestamp",
]
