"""
Prometheus metrics for chathub business operations.

Complements the HTTP metrics exposed by prometheus-fastapi-instrumentator with
counters for chatroom resolution, message lifecycle and WebSocket fan-out.
"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# WebSocket / PresenceHub Metrics
# ============================================================================

websocket_connections_active = Gauge(
    'chathub_websocket_connections_active',
    'Number of live WebSocket connections'
)

websocket_connections_total = Counter(
    'chathub_websocket_connections_total',
    'Total number of WebSocket connections registered'
)

websocket_disconnections_total = Counter(
    'chathub_websocket_disconnections_total',
    'Total number of WebSocket disconnections',
    ['reason']
)

chatroom_subscribers_active = Gauge(
    'chathub_chatroom_subscribers_active',
    'Number of connections subscribed to a chatroom topic',
    ['chatroom_id']
)

events_published_total = Counter(
    'chathub_events_published_total',
    'Total number of events published to chatroom topics',
    ['event_type']
)

events_dropped_total = Counter(
    'chathub_events_dropped_total',
    'Events dropped because the subscriber was dead or too slow',
    ['reason']
)

presence_projection_errors_total = Counter(
    'chathub_presence_projection_errors_total',
    'Failed attempts to project user presence to the directory'
)

# ============================================================================
# Chatroom Metrics
# ============================================================================

chatrooms_created_total = Counter(
    'chathub_chatrooms_created_total',
    'Total number of chatrooms created',
    ['kind']
)

chatroom_create_conflicts_total = Counter(
    'chathub_chatroom_create_conflicts_total',
    'Concurrent chatroom inserts that lost the race and re-read the winner',
    ['kind']
)

# ============================================================================
# Message Lifecycle Metrics
# ============================================================================

messages_created_total = Counter(
    'chathub_messages_created_total',
    'Total number of messages created',
    ['origin']  # personal, group, reply, forward
)

message_status_transitions_total = Counter(
    'chathub_message_status_transitions_total',
    'Total number of applied message status transitions',
    ['status']
)

messages_edited_total = Counter(
    'chathub_messages_edited_total',
    'Total number of message edits'
)

messages_deleted_total = Counter(
    'chathub_messages_deleted_total',
    'Total number of messages soft-deleted'
)

message_operation_duration_seconds = Histogram(
    'chathub_message_operation_duration_seconds',
    'Duration of message operations in seconds',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

message_operation_errors_total = Counter(
    'chathub_message_operation_errors_total',
    'Total number of message operation errors',
    ['operation', 'error_type']
)

# ============================================================================
# MongoDB Operation Metrics
# ============================================================================

mongodb_operations_total = Counter(
    'chathub_mongodb_operations_total',
    'Total number of MongoDB operations',
    ['operation', 'collection', 'status']
)
