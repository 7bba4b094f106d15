"""
Data structures for the retention executor.

Timestamps are unix seconds (UTC) so cut-off comparisons in SQL stay
plain numeric comparisons.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class RetentionPolicy:
    """A scheduled rule deleting aged content within one scope.

    Exactly one of ``channel_id`` / ``guild_id`` scopes the policy; a policy
    with a channel is channel-scoped even when the guild is also recorded.

    Attributes:
        id: Policy identifier.
        channel_id: Channel scope, or None for a guild-wide policy.
        guild_id: Guild scope (also kept for channel policies when known).
        max_age_days: Messages older than this many days are deleted.
        delete_attachments: Cascade deletion into attachment rows and blobs.
        delete_pins: Also delete pinned messages.
        enabled: Disabled policies are never selected.
        last_run_at: Unix seconds of the last execution, if any.
        next_run_at: Unix seconds when the policy is next due, if scheduled.
        messages_deleted: Cumulative count across all runs.
    """
    id: str
    channel_id: str | None
    guild_id: str | None
    max_age_days: int
    delete_attachments: bool = True
    delete_pins: bool = False
    enabled: bool = True
    last_run_at: float | None = None
    next_run_at: float | None = None
    messages_deleted: int = 0
    created_by: str | None = None
    created_at: float = 0.0

    @property
    def is_channel_scoped(self) -> bool:
        return self.channel_id is not None

    @property
    def has_scope(self) -> bool:
        return self.channel_id is not None or self.guild_id is not None

    def describe_scope(self) -> str:
        if self.channel_id is not None:
            return f"channel {self.channel_id}"
        if self.guild_id is not None:
            return f"guild {self.guild_id}"
        return "no scope"


@dataclass(frozen=True, slots=True)
class AttachmentRecord:
    """An attachment row together with the location of its blob."""
    id: str
    message_id: str
    bucket: str
    key: str


@dataclass(slots=True)
class PolicyRunResult:
    """Outcome of one policy execution within a retention pass."""
    policy_id: str
    messages_deleted: int = 0
    batches: int = 0
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
