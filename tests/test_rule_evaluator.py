from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeClock, make_message, make_rule

from modsentry.automod.rule_evaluator import RuleEvaluator
from modsentry.automod.spam_tracker import SpamTracker
from modsentry.datatypes.automod_datatypes import RuleType, WordFilterConfig
from modsentry.errors import StoreError


def _store_with(*rules) -> MagicMock:
    store = MagicMock()
    store.list_enabled_rules = AsyncMock(return_value=list(rules))
    return store


@pytest.mark.asyncio
async def test_first_triggering_rule_wins_in_creation_order():
    words = make_rule("words", RuleType.WORD_FILTER, {"words": ["caps"]}, created_at=1.0)
    caps = make_rule("caps", RuleType.CAPS_FILTER, {"min_length": 5}, created_at=2.0)
    evaluator = RuleEvaluator(_store_with(words, caps))

    match = await evaluator.evaluate(make_message("THIS IS ALL CAPS"))

    assert match is not None
    assert match.rule.id == "words"
    assert match.reason == "blocked word: caps"


@pytest.mark.asyncio
async def test_order_reversed_changes_the_winner():
    caps = make_rule("caps", RuleType.CAPS_FILTER, {"min_length": 5}, created_at=1.0)
    words = make_rule("words", RuleType.WORD_FILTER, {"words": ["caps"]}, created_at=2.0)
    evaluator = RuleEvaluator(_store_with(caps, words))

    match = await evaluator.evaluate(make_message("THIS IS ALL CAPS"))

    assert match.rule.id == "caps"
    assert match.reason == "excessive caps"


@pytest.mark.asyncio
async def test_later_rules_are_not_evaluated_after_a_match():
    tracker = SpamTracker(clock=FakeClock())
    words = make_rule("words", RuleType.WORD_FILTER, {"words": ["hello"]}, created_at=1.0)
    spam = make_rule("spam", RuleType.SPAM_FILTER, {"max_messages": 1}, created_at=2.0)
    evaluator = RuleEvaluator(_store_with(words, spam), spam_tracker=tracker)

    await evaluator.evaluate(make_message("hello"))
    assert tracker.entries("user1", "chan1") == []


@pytest.mark.parametrize(
    "rule_type, config, content",
    [
        (RuleType.WORD_FILTER, {"words": ["bad"]}, "bad"),
        (RuleType.REGEX_FILTER, {"patterns": ["b.d"]}, "bad"),
        (RuleType.INVITE_FILTER, {}, "discord.gg/abc"),
        (RuleType.MENTION_SPAM, {"max_mentions": 1}, "<@1>"),
        (RuleType.CAPS_FILTER, {"min_length": 1}, "LOUD"),
        (RuleType.SPAM_FILTER, {"max_messages": 1, "max_duplicates": 1}, "x"),
        (RuleType.LINK_FILTER, {"blocked_domains": ["bad.com"]}, "https://bad.com"),
    ],
)
@pytest.mark.asyncio
async def test_exempt_channel_never_triggers(rule_type, config, content):
    rule = make_rule("r1", rule_type, config, exempt_channel_ids=("chan1",))
    evaluator = RuleEvaluator(_store_with(rule), spam_tracker=SpamTracker(clock=FakeClock()))

    for _ in range(3):
        assert await evaluator.evaluate(make_message(content, channel_id="chan1")) is None

    # Sanity check: the same rule fires elsewhere
    results = [await evaluator.evaluate(make_message(content, channel_id="chan2")) for _ in range(3)]
    assert any(result is not None for result in results)


@pytest.mark.asyncio
async def test_exempt_role_skips_rule():
    rule = make_rule("r1", RuleType.WORD_FILTER, {"words": ["bad"]}, exempt_role_ids=("mods",))
    evaluator = RuleEvaluator(_store_with(rule))

    assert await evaluator.evaluate(make_message("bad", roles=("mods",))) is None
    assert await evaluator.evaluate(make_message("bad", roles=("members",))) is not None


@pytest.mark.asyncio
async def test_dm_and_empty_messages_are_not_evaluated():
    store = _store_with(make_rule("r1", RuleType.WORD_FILTER, {"words": ["bad"]}))
    evaluator = RuleEvaluator(store)

    assert await evaluator.evaluate(make_message("bad", guild_id="")) is None
    assert await evaluator.evaluate(make_message("")) is None
    store.list_enabled_rules.assert_not_awaited()


@pytest.mark.asyncio
async def test_mismatched_config_does_not_trigger():
    rule = make_rule("r1", RuleType.CAPS_FILTER)
    rule.config = WordFilterConfig(words=("loud",))
    evaluator = RuleEvaluator(_store_with(rule))

    assert await evaluator.evaluate(make_message("LOUD LOUD LOUD LOUD")) is None


@pytest.mark.asyncio
async def test_store_failure_propagates():
    store = MagicMock()
    store.list_enabled_rules = AsyncMock(side_effect=StoreError("database is locked"))
    evaluator = RuleEvaluator(store)

    with pytest.raises(StoreError):
        await evaluator.evaluate(make_message("hello"))


@pytest.mark.asyncio
async def test_rules_loaded_from_sqlite_keep_creation_order(store):
    await store.add_rule(make_rule("second", RuleType.CAPS_FILTER, {"min_length": 5}, created_at=20.0))
    await store.add_rule(make_rule("first", RuleType.WORD_FILTER, {"words": ["all"]}, created_at=10.0))
    evaluator = RuleEvaluator(store)

    match = await evaluator.evaluate(make_message("THIS IS ALL CAPS"))
    assert match.rule.id == "first"
