"""Conversation accessors for the monitor's perception layer."""

from wa_monitor.watchers.base_watcher import ConversationAccessor
from wa_monitor.watchers.whatsapp_watcher import WhatsAppAccessor

__all__ = ["ConversationAccessor", "WhatsAppAccessor"]
