"""WhatsApp keyword monitor - scans WhatsApp Web groups for keyword matches."""

__version__ = "1.0.0"
