"""Platform adapters for the WhatsApp gateway."""

from app.adapters.base import BasePlatformAdapter, MessagingTransport
from app.adapters.whatsapp_gateway import WhatsAppGatewayAdapter

__all__ = ["BasePlatformAdapter", "MessagingTransport", "WhatsAppGatewayAdapter"]
