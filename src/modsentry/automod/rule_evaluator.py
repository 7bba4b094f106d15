"""
Rule evaluation for a single message.

The evaluator loads the guild's enabled rules in creation order, skips the
ones the message is exempt from and dispatches the rest to their filter.
The first rule that triggers wins; later rules are not evaluated.
"""

from __future__ import annotations

from typing import Callable, Dict

from modsentry.automod import filters
from modsentry.automod.regex_cache import RegexCache
from modsentry.automod.spam_tracker import SpamTracker
from modsentry.database.database import MessageStore
from modsentry.datatypes.automod_datatypes import (
    CapsFilterConfig,
    InviteFilterConfig,
    LinkFilterConfig,
    MentionSpamConfig,
    MessageContext,
    RegexFilterConfig,
    Rule,
    RuleMatch,
    RuleType,
    SpamFilterConfig,
    WordFilterConfig,
)
from modsentry.util.logger import get_logger

logger = get_logger("rule_evaluator")

RuleCheck = Callable[[Rule, MessageContext], filters.FilterResult]


class RuleEvaluator:
    """
    Evaluates messages against the guild's automod rules.

    Args:
        store: Source of the rule sets.
        spam_tracker: Sliding-window state backing ``spam_filter`` rules.
        regex_cache: Compiled pattern cache owned by this evaluator.
    """

    def __init__(
        self,
        store: MessageStore,
        spam_tracker: SpamTracker | None = None,
        regex_cache: RegexCache | None = None,
    ) -> None:
        self.store = store
        self.spam_tracker = spam_tracker if spam_tracker is not None else SpamTracker()
        self.regex_cache = regex_cache if regex_cache is not None else RegexCache()

        self._checks: Dict[RuleType, RuleCheck] = {
            RuleType.WORD_FILTER: self._check_words,
            RuleType.REGEX_FILTER: self._check_regex,
            RuleType.INVITE_FILTER: self._check_invites,
            RuleType.MENTION_SPAM: self._check_mentions,
            RuleType.CAPS_FILTER: self._check_caps,
            RuleType.SPAM_FILTER: self._check_spam,
            RuleType.LINK_FILTER: self._check_links,
        }

    async def evaluate(self, message: MessageContext) -> RuleMatch | None:
        """
        Return the first rule triggered by ``message``, or None.

        Messages without a guild or without content are never evaluated.

        Raises:
            StoreError: If the rule set cannot be loaded.
        """
        if not message.guild_id or not message.content:
            return None

        rules = await self.store.list_enabled_rules(message.guild_id)
        for rule in rules:
            if not rule.enabled:
                continue
            if rule.is_exempt(message.channel_id, message.member_role_ids):
                logger.debug("[AUTOMOD] Rule %s skipped for message %s (exempt)", rule.id, message.message_id)
                continue

            triggered, reason = self.check_rule(rule, message)
            if triggered:
                logger.info(
                    "[AUTOMOD] Rule '%s' (%s) triggered on message %s in guild %s: %s",
                    rule.name, rule.rule_type, message.message_id, message.guild_id, reason,
                )
                return RuleMatch(rule=rule, reason=reason)
        return None

    def check_rule(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        """Run the filter for one rule. Unknown types and mismatched configs never trigger."""
        check = self._checks.get(rule.rule_type)
        if check is None:
            return filters.NOT_TRIGGERED
        try:
            return check(rule, message)
        except (TypeError, AttributeError, ValueError) as exc:
            logger.error("[AUTOMOD] Rule %s could not be evaluated: %s", rule.id, exc)
            return filters.NOT_TRIGGERED

    # ------------------------------------------------------------------
    # Per-type dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _expect(rule: Rule, config_type: type):
        if not isinstance(rule.config, config_type):
            raise TypeError(f"{rule.rule_type} rule carries {type(rule.config).__name__}")
        return rule.config

    def _check_words(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_word_filter(message.content, self._expect(rule, WordFilterConfig))

    def _check_regex(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_regex_filter(message.content, self._expect(rule, RegexFilterConfig), self.regex_cache)

    def _check_invites(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_invite_filter(message.content, self._expect(rule, InviteFilterConfig))

    def _check_mentions(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_mention_spam(message.content, self._expect(rule, MentionSpamConfig))

    def _check_caps(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_caps_filter(message.content, self._expect(rule, CapsFilterConfig))

    def _check_spam(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        config = self._expect(rule, SpamFilterConfig)
        return self.spam_tracker.check(message.author_id, message.channel_id, message.content, config)

    def _check_links(self, rule: Rule, message: MessageContext) -> filters.FilterResult:
        return filters.check_link_filter(message.content, self._expect(rule, LinkFilterConfig))
