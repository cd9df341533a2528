"""
Prometheus metrics for group chat business operations.

Complements the HTTP metrics provided by prometheus-fastapi-instrumentator.
"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Live Feed Metrics
# ============================================================================

feed_subscriptions_active = Gauge(
    'groupchat_feed_subscriptions_active',
    'Number of active live subscriptions per group with subscribers',
    ['group_id']
)

feed_subscriptions_total = Counter(
    'groupchat_feed_subscriptions_total',
    'Total number of live subscriptions opened'
)

feed_unsubscriptions_total = Counter(
    'groupchat_feed_unsubscriptions_total',
    'Total number of live subscriptions released',
    ['reason']
)

feed_snapshots_published_total = Counter(
    'groupchat_feed_snapshots_published_total',
    'Total number of group snapshots published to subscribers'
)

feed_snapshots_superseded_total = Counter(
    'groupchat_feed_snapshots_superseded_total',
    'Undelivered snapshots replaced by a newer one'
)

# ============================================================================
# Group Lifecycle Metrics
# ============================================================================

groups_created_total = Counter(
    'groupchat_groups_created_total',
    'Total number of groups created'
)

groups_deleted_total = Counter(
    'groupchat_groups_deleted_total',
    'Total number of groups deleted',
    ['reason']
)

group_members_added_total = Counter(
    'groupchat_group_members_added_total',
    'Total number of members added to groups'
)

group_members_removed_total = Counter(
    'groupchat_group_members_removed_total',
    'Total number of members removed from groups',
    ['pattern']
)

# ============================================================================
# Member Index Metrics
# ============================================================================

index_writes_total = Counter(
    'groupchat_index_writes_total',
    'Per-member group index writes',
    ['operation', 'status']
)

index_partial_failures_total = Counter(
    'groupchat_index_partial_failures_total',
    'Operations whose index fan-out partially failed',
    ['operation']
)

# ============================================================================
# Message Operation Metrics
# ============================================================================

messages_sent_total = Counter(
    'groupchat_messages_sent_total',
    'Total number of messages sent',
    ['group_id']
)

messages_deleted_total = Counter(
    'groupchat_messages_deleted_total',
    'Total number of messages deleted',
    ['group_id']
)

message_operation_duration_seconds = Histogram(
    'groupchat_message_operation_duration_seconds',
    'Duration of message operations in seconds',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

message_operation_errors_total = Counter(
    'groupchat_message_operation_errors_total',
    'Total number of message operation errors',
    ['operation', 'error_type']
)

# ============================================================================
# Store Operation Metrics
# ============================================================================

store_operations_total = Counter(
    'groupchat_store_operations_total',
    'Total number of backing store operations',
    ['operation', 'collection', 'status']
)

store_operation_duration_seconds = Histogram(
    'groupchat_store_operation_duration_seconds',
    'Duration of backing store operations in seconds',
    ['operation', 'collection'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)
