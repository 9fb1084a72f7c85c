"""
Bulk embedding configuration.

Config values can be set in vectorpool.config with BULK_EMBED.* prefix:

    BULK_EMBED.PAGE_SIZE=100
    BULK_EMBED.POLL_INTERVAL_SECONDS=30
    BULK_EMBED.LEASE_SECONDS=600

Usage:
    config = BulkEmbedConfig.from_config("bulk_embed")
    config = BulkEmbedConfig(poll_interval_seconds=0)
"""

from __future__ import annotations

from vectorpool.config import ConfigParam, StepConfig


class BulkEmbedConfig(StepConfig):
    """Configuration for bulk embedding runs.

    Loaded from vectorpool.config with BULK_EMBED.* prefix.
    """

    # Scanning
    page_size: int = ConfigParam(
        default=50, ge=1, le=1000, description="Source documents read per page"
    )
    metadata_page_size: int = ConfigParam(
        default=500, ge=1, le=10000, description="Input metadata rows read per page"
    )

    # Polling
    poll_interval_seconds: float = ConfigParam(
        default=5.0, ge=0, le=3600, description="Delay before a requeued poll task runs"
    )
    lease_seconds: float = ConfigParam(
        default=300.0,
        ge=1,
        le=86400,
        description="How long a poll task owns a batch before another may claim it",
    )

    # Queues
    prepare_queue_name: str = ConfigParam(
        default="vectorpool-bulk-prepare", description="Queue for prepare tasks"
    )
    poll_queue_name: str = ConfigParam(
        default="vectorpool-bulk-poll", description="Queue for poll-or-complete tasks"
    )
    realtime_queue_name: str = ConfigParam(
        default="vectorpool-realtime", description="Queue for realtime vectorize tasks"
    )
