# Infrastructure clients
from clients.valkey_client import ValkeyClient
from clients.notification_client import NotificationGatewayClient, NotificationGatewayError
