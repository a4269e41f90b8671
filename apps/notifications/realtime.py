"""
Real-time propagation of task lifecycle events.

Channels:
- admin: every administrator connection
- user-<id>: connections of one user (owner, delegate, original owner)

The registry only knows about subscribers connected right now. It keeps no
history: a client that (re)connects must re-fetch the state it shows.
Publication is scheduled with transaction.on_commit, so subscribers never
see a mutation that was rolled back and events for one task reach a
subscriber in commit order.
"""

import logging
import queue
import threading
from collections import defaultdict

from django.apps import apps
from django.db import transaction

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = 'admin'

# Event names
TASK_CREATED = 'task-created'
TASK_UPDATED = 'task-update'
TASK_DELETED = 'task-deleted'
TASK_STATUS_UPDATED = 'task-status-updated'
TASK_ESCALATED = 'task-escalated'
TASK_ROLLBACK = 'task-rollback'
TASK_PROGRESS_ADDED = 'task-progress-added'


_CLOSED = object()


def user_channel(user_id):
    """Channel name for one user's connections."""
    return f'user-{user_id}'


class SubscriptionClosed(Exception):
    """Raised by Subscription.get() once the subscription is closed."""


class Subscription:
    """
    One connected client's view of a set of channels.

    Events are buffered in a bounded queue. A client that falls so far
    behind that the queue fills up is disconnected instead of silently
    losing events; it resubscribes and re-fetches like any reconnect.
    """

    def __init__(self, channels, maxsize=100):
        self.channels = frozenset(channels)
        self._queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    def __repr__(self):
        return f'<Subscription channels={sorted(self.channels)}>'

    @property
    def closed(self):
        return self._closed.is_set()

    def deliver(self, event, payload):
        """Queue an event; returns False if the subscription is (now) closed."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait((event, payload))
        except queue.Full:
            logger.warning('Subscriber %r overflowed; disconnecting it', self)
            self.close()
            return False
        return True

    def get(self, timeout=None):
        """
        Return the next (event, payload) pair, or None when timeout expires.

        Raises SubscriptionClosed once closed and drained.
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            if self.closed:
                raise SubscriptionClosed()
            return None
        if item is _CLOSED:
            raise SubscriptionClosed()
        return item

    def drain(self):
        """Return every queued event without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is not _CLOSED:
                events.append(item)

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        # Wake up a reader blocked in get()
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            pass


class ChannelRegistry:
    """
    Process-local map of channel name to connected subscriptions.

    Lifecycle: start() when the application boots, close() on shutdown.
    Instances are injectable; the application-wide one lives on the
    notifications AppConfig. Subscribers in other processes are not
    reached, so the web tier runs as a single process.
    """

    def __init__(self, queue_size=100):
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._channels = defaultdict(set)
        self._running = False

    @property
    def running(self):
        return self._running

    def start(self):
        with self._lock:
            self._running = True
        logger.info('Real-time channel registry started')

    def close(self):
        """Disconnect every subscriber and stop accepting new ones."""
        with self._lock:
            subscriptions = {sub for subs in self._channels.values() for sub in subs}
            self._channels.clear()
            self._running = False
        for subscription in subscriptions:
            subscription.close()
        logger.info('Real-time channel registry closed (%d subscribers dropped)', len(subscriptions))

    def subscribe(self, channels):
        """Register a new subscription on the given channels."""
        channels = list(channels)
        if not channels:
            raise ValueError('A subscription needs at least one channel.')
        subscription = Subscription(channels, maxsize=self.queue_size)
        with self._lock:
            if not self._running:
                raise RuntimeError('Channel registry is not running.')
            for channel in subscription.channels:
                self._channels[channel].add(subscription)
        logger.debug('Subscribed %r', subscription)
        return subscription

    def unsubscribe(self, subscription):
        with self._lock:
            for channel in subscription.channels:
                members = self._channels.get(channel)
                if members is None:
                    continue
                members.discard(subscription)
                if not members:
                    del self._channels[channel]
        subscription.close()
        logger.debug('Unsubscribed %r', subscription)

    def subscriber_count(self, channel=None):
        with self._lock:
            if channel is not None:
                return len(self._channels.get(channel, ()))
            return len({sub for subs in self._channels.values() for sub in subs})

    def publish(self, channel, event, payload):
        """Deliver an event to every subscriber of one channel."""
        return self.broadcast([channel], event, payload)

    def broadcast(self, channels, event, payload):
        """
        Deliver an event once to every subscriber of any of the channels.

        Returns the number of subscriptions the event was queued for.
        """
        with self._lock:
            targets = set()
            for channel in channels:
                targets.update(self._channels.get(channel, ()))

        delivered = 0
        dead = []
        for subscription in targets:
            if subscription.deliver(event, payload):
                delivered += 1
            else:
                dead.append(subscription)
        for subscription in dead:
            self.unsubscribe(subscription)
        if dead:
            logger.debug('Removed %d dead subscriptions', len(dead))
        return delivered


class TaskEventPublisher:
    """
    Routes task lifecycle events to the admin channel and the personal
    channels of every user the change concerns.
    """

    def __init__(self, registry):
        self.registry = registry

    @staticmethod
    def channels_for(user_ids):
        channels = [ADMIN_CHANNEL]
        for user_id in sorted({uid for uid in user_ids if uid is not None}):
            channels.append(user_channel(user_id))
        return channels

    @staticmethod
    def affected_user_ids(task):
        return [task.user_id, task.escalated_to_id, task.original_user_id]

    def task_event(self, event, task, extra_user_ids=()):
        """
        Publish the task's current representation after the surrounding
        transaction commits.
        """
        from apps.tasks.serializers import serialize_task

        payload = serialize_task(task)
        user_ids = self.affected_user_ids(task) + list(extra_user_ids)
        self.after_commit(event, payload, user_ids)

    def task_deleted(self, task_id, user_ids):
        self.after_commit(TASK_DELETED, {'id': task_id}, user_ids)

    def after_commit(self, event, payload, user_ids):
        channels = self.channels_for(user_ids)

        def send():
            delivered = self.registry.broadcast(channels, event, payload)
            logger.info('Published %s to %s (%d subscribers)', event, ', '.join(channels), delivered)

        transaction.on_commit(send)


def get_registry():
    """The application-wide registry installed by NotificationsConfig.ready()."""
    return apps.get_app_config('notifications').registry


def get_publisher():
    return TaskEventPublisher(get_registry())
