"""
Message persistence collaborators.
"""

from chat_relay.components.persistence.hooks import (
    PersistenceHook,
    NullPersistence,
    WebhookPersistence,
    PersistenceDispatcher,
)

__all__ = [
    "PersistenceHook",
    "NullPersistence",
    "WebhookPersistence",
    "PersistenceDispatcher",
]
