"""Webhook dispatch engine."""

from sparkcloud.webhooks.invoker import WebhookInvoker
from sparkcloud.webhooks.manager import WebhookManager
from sparkcloud.webhooks.models import RequestDescriptor, Webhook, WebhookAuth, WebhookResponse
from sparkcloud.webhooks.publisher import ResponsePublisher
from sparkcloud.webhooks.request import compile_request
from sparkcloud.webhooks.templates import compile_object, compile_template

__all__ = [
    "RequestDescriptor",
    "ResponsePublisher",
    "Webhook",
    "WebhookAuth",
    "WebhookInvoker",
    "WebhookManager",
    "WebhookResponse",
    "compile_object",
    "compile_request",
    "compile_template",
]
