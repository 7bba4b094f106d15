"""
Rule, configuration and audit types for the automod engine.

Rule configuration is modelled as one frozen dataclass per rule type. Each
variant carries only the fields its evaluator reads, and ``parse_rule_config``
builds the right variant from the JSON blob stored with the rule. Fields that
are missing, of the wrong type or irrelevant to the rule type are dropped
and the engine-wide defaults apply instead; parsing never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Mapping, Tuple, Type, Union


class RuleType(Enum):
    """Enumeration of supported automod rule types."""

    WORD_FILTER = "word_filter"
    REGEX_FILTER = "regex_filter"
    INVITE_FILTER = "invite_filter"
    MENTION_SPAM = "mention_spam"
    CAPS_FILTER = "caps_filter"
    SPAM_FILTER = "spam_filter"
    LINK_FILTER = "link_filter"

    def __str__(self) -> str:
        return self.value


class AutomodAction(Enum):
    """Remedial action taken when a rule triggers."""

    DELETE = "delete"
    WARN = "warn"
    TIMEOUT = "timeout"
    LOG = "log"

    def __str__(self) -> str:
        return self.value


# Engine-wide defaults, applied whenever a config value is absent or <= 0
DEFAULT_MAX_MENTIONS = 5
DEFAULT_MAX_CAPS_PERCENT = 70
DEFAULT_CAPS_MIN_LENGTH = 10
DEFAULT_MAX_MESSAGES = 5
DEFAULT_WINDOW_SECONDS = 5
DEFAULT_MAX_DUPLICATES = 3


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item)


# -------------------- Config variants --------------------

@dataclass(frozen=True, slots=True)
class WordFilterConfig:
    words: Tuple[str, ...] = ()
    match_whole_word: bool = False

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "WordFilterConfig":
        return cls(
            words=_str_tuple(raw.get("words")),
            match_whole_word=raw.get("match_whole_word") is True,
        )


@dataclass(frozen=True, slots=True)
class RegexFilterConfig:
    patterns: Tuple[str, ...] = ()

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "RegexFilterConfig":
        return cls(patterns=_str_tuple(raw.get("patterns")))


@dataclass(frozen=True, slots=True)
class InviteFilterConfig:
    # Accepted and stored for round-tripping; invite links to the own guild
    # are not distinguished when matching.
    allow_own_guild: bool = False

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "InviteFilterConfig":
        return cls(allow_own_guild=raw.get("allow_own_guild") is True)


@dataclass(frozen=True, slots=True)
class MentionSpamConfig:
    max_mentions: int = DEFAULT_MAX_MENTIONS

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "MentionSpamConfig":
        return cls(max_mentions=_positive_int(raw.get("max_mentions"), DEFAULT_MAX_MENTIONS))


@dataclass(frozen=True, slots=True)
class CapsFilterConfig:
    max_caps_percent: int = DEFAULT_MAX_CAPS_PERCENT
    min_length: int = DEFAULT_CAPS_MIN_LENGTH

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "CapsFilterConfig":
        return cls(
            max_caps_percent=_positive_int(raw.get("max_caps_percent"), DEFAULT_MAX_CAPS_PERCENT),
            min_length=_positive_int(raw.get("min_length"), DEFAULT_CAPS_MIN_LENGTH),
        )


@dataclass(frozen=True, slots=True)
class SpamFilterConfig:
    max_messages: int = DEFAULT_MAX_MESSAGES
    window_seconds: int = DEFAULT_WINDOW_SECONDS
    max_duplicates: int = DEFAULT_MAX_DUPLICATES

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "SpamFilterConfig":
        return cls(
            max_messages=_positive_int(raw.get("max_messages"), DEFAULT_MAX_MESSAGES),
            window_seconds=_positive_int(raw.get("window_seconds"), DEFAULT_WINDOW_SECONDS),
            max_duplicates=_positive_int(raw.get("max_duplicates"), DEFAULT_MAX_DUPLICATES),
        )


@dataclass(frozen=True, slots=True)
class LinkFilterConfig:
    allowed_domains: Tuple[str, ...] = ()
    blocked_domains: Tuple[str, ...] = ()

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "LinkFilterConfig":
        return cls(
            allowed_domains=_str_tuple(raw.get("allowed_domains")),
            blocked_domains=_str_tuple(raw.get("blocked_domains")),
        )


RuleConfig = Union[
    WordFilterConfig,
    RegexFilterConfig,
    InviteFilterConfig,
    MentionSpamConfig,
    CapsFilterConfig,
    SpamFilterConfig,
    LinkFilterConfig,
]

CONFIG_TYPES: Dict[RuleType, Type[Any]] = {
    RuleType.WORD_FILTER: WordFilterConfig,
    RuleType.REGEX_FILTER: RegexFilterConfig,
    RuleType.INVITE_FILTER: InviteFilterConfig,
    RuleType.MENTION_SPAM: MentionSpamConfig,
    RuleType.CAPS_FILTER: CapsFilterConfig,
    RuleType.SPAM_FILTER: SpamFilterConfig,
    RuleType.LINK_FILTER: LinkFilterConfig,
}


def parse_rule_config(rule_type: RuleType, raw: Mapping[str, Any] | None) -> RuleConfig:
    """Build the config variant for ``rule_type`` from a decoded JSON blob.

    Anything that is not a mapping is treated as an empty config.
    """
    if not isinstance(raw, Mapping):
        raw = {}
    return CONFIG_TYPES[rule_type].from_json(raw)


def config_to_json(config: RuleConfig) -> Dict[str, Any]:
    """Serialize a config variant back to its JSON blob shape."""
    data: Dict[str, Any] = {}
    for config_field in fields(config):
        value = getattr(config, config_field.name)
        data[config_field.name] = list(value) if isinstance(value, tuple) else value
    return data


# -------------------- Records --------------------

@dataclass(slots=True)
class Rule:
    """An automod rule configured for a guild.

    Attributes:
        id: Rule identifier.
        guild_id: Owning guild.
        name: Human-readable name, snapshotted into audit records.
        enabled: Disabled rules are never loaded for evaluation.
        rule_type: Which evaluator handles the rule.
        config: Type-specific configuration variant.
        action: Remedial action when the rule triggers.
        timeout_duration_seconds: Only read when ``action`` is TIMEOUT.
        exempt_channel_ids: Channels where the rule is skipped.
        exempt_role_ids: Roles whose holders bypass the rule.
        created_at: Unix seconds; defines evaluation order.
    """
    id: str
    guild_id: str
    name: str
    rule_type: RuleType
    config: RuleConfig
    action: AutomodAction = AutomodAction.DELETE
    enabled: bool = True
    timeout_duration_seconds: int = 0
    exempt_channel_ids: Tuple[str, ...] = ()
    exempt_role_ids: Tuple[str, ...] = ()
    created_by: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def is_exempt(self, channel_id: str, role_ids: Tuple[str, ...]) -> bool:
        """Return True if the channel or any of the roles bypasses this rule."""
        if channel_id in self.exempt_channel_ids:
            return True
        exempt_roles = set(self.exempt_role_ids)
        return any(role_id in exempt_roles for role_id in role_ids)


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Everything the engine needs to evaluate one message. Never persisted."""
    message_id: str
    channel_id: str
    guild_id: str
    author_id: str
    content: str
    member_role_ids: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """The first rule that triggered for a message, with its reason."""
    rule: Rule
    reason: str


@dataclass(frozen=True, slots=True)
class AutomodActionRecord:
    """Immutable audit row written after an action has been executed."""
    id: str
    guild_id: str
    rule_id: str
    channel_id: str
    user_id: str
    action: AutomodAction
    rule_name: str
    reason: str
    message_id: str | None = None
    content_excerpt: str = ""
    created_at: float = 0.0
