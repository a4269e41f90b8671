"""
Views for notifications app.

Server-Sent Events stream of task lifecycle events. A connection receives
events for its user's channel, plus the admin channel for administrators.
There is no replay: clients re-fetch their data after (re)connecting.
"""

import json
import logging

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.http import JsonResponse, StreamingHttpResponse
from django.views.decorators.http import require_GET

from apps.accounts.decorators import api_login_required
from .realtime import ADMIN_CHANNEL, SubscriptionClosed, get_registry, user_channel

logger = logging.getLogger(__name__)

# Browser reconnect delay advertised to EventSource clients
RETRY_MILLISECONDS = 3000


def format_event(event, payload):
    """Encode one event in text/event-stream framing."""
    data = json.dumps(payload, cls=DjangoJSONEncoder)
    return f'event: {event}\ndata: {data}\n\n'


def channels_for_user(user):
    channels = [user_channel(user.pk)]
    if user.is_admin():
        channels.append(ADMIN_CHANNEL)
    return channels


def stream_events(registry, subscription, keepalive):
    """Yield SSE frames until the subscription closes or the client leaves."""
    try:
        yield f'retry: {RETRY_MILLISECONDS}\n\n'
        yield ': connected\n\n'
        while True:
            try:
                item = subscription.get(timeout=keepalive)
            except SubscriptionClosed:
                return
            if item is None:
                yield ': keepalive\n\n'
                continue
            event, payload = item
            yield format_event(event, payload)
    finally:
        registry.unsubscribe(subscription)


@require_GET
@api_login_required
def event_stream(request):
    """Subscribe the caller and stream events as they are published."""
    registry = get_registry()
    try:
        subscription = registry.subscribe(channels_for_user(request.user))
    except RuntimeError:
        logger.error('Event stream requested while the channel registry is stopped')
        return JsonResponse(
            {'error': 'Unavailable', 'message': 'Real-time events are not available.'},
            status=503,
        )

    logger.info('User %s subscribed to %s', request.user.pk, ', '.join(sorted(subscription.channels)))
    keepalive = getattr(settings, 'REALTIME_KEEPALIVE_SECONDS', 15)
    response = StreamingHttpResponse(
        stream_events(registry, subscription, keepalive),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response
