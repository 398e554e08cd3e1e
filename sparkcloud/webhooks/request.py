"""Compile a webhook definition and an event into an outbound request."""

from __future__ import annotations

import json
from typing import Any

from sparkcloud.core.bus import Event
from sparkcloud.utils.logging import get_logger
from sparkcloud.webhooks.models import RequestDescriptor, Webhook
from sparkcloud.webhooks.templates import compile_object, compile_template

log = get_logger(__name__)


def default_request_context(event: Event) -> dict[str, Any]:
    """Fields every webhook payload carries unless defaults are disabled."""
    return {
        "coreid": event.device_id,
        "data": event.data,
        "event": event.name,
        "published_at": event.published_at,
    }


def parse_event_data(event: Event) -> dict[str, Any]:
    """Top-level fields of JSON event data, or ``{}`` if there are none."""
    if not event.data:
        return {}
    try:
        parsed = json.loads(event.data)
    except ValueError:
        log.debug("event_data_not_json", event_name=event.name, data=event.data)
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def compile_request(webhook: Webhook, event: Event) -> RequestDescriptor:
    defaults = default_request_context(event)
    # Identity fields win over same-named keys in the event data
    context = {**parse_event_data(event), **defaults}

    descriptor = RequestDescriptor(
        method=webhook.request_type,
        url=compile_template(webhook.url, context),
        headers=webhook.headers,
        auth=webhook.auth,
        verify=webhook.reject_unauthorized,
    )

    if webhook.json is not None:
        descriptor.body = {**defaults, **compile_object(webhook.json, context)}
    elif webhook.form is not None:
        descriptor.form = {**defaults, **compile_object(webhook.form, context)}
    elif not webhook.no_defaults:
        descriptor.form = defaults

    if webhook.query is not None:
        descriptor.qs = compile_object(webhook.query, context)

    return descriptor
