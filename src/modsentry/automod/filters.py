"""
Stateless content filters used by the rule evaluator.

Every filter takes the message content and its rule's config variant and
returns ``(triggered, reason)``. Filters never raise and never touch shared
state; the only collaborator is the injected ``RegexCache`` for regex rules,
which also bounds how long a single pattern may run.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple
from urllib.parse import urlsplit

from modsentry.automod.regex_cache import RegexCache
from modsentry.datatypes.automod_datatypes import (
    CapsFilterConfig,
    InviteFilterConfig,
    LinkFilterConfig,
    MentionSpamConfig,
    RegexFilterConfig,
    WordFilterConfig,
)

FilterResult = Tuple[bool, str]

NOT_TRIGGERED: FilterResult = (False, "")

# Known invite link shapes: discord.gg/x, discordapp.com/invite/x, invite.gg/x,
# and <instance>.<tld>/invite/x for our own and the upstream chat frontends
INVITE_RE = re.compile(
    r"(?:discord\.gg|discordapp\.com/invite|invite\.gg|(?:modsentry|amityvox)\.[a-z]+/invite)/([A-Za-z0-9_-]+)",
    re.IGNORECASE,
)

MENTION_RE = re.compile(r"<@!?[0-9A-Za-z]+>")

URL_TRAILING_PUNCTUATION = ".,;:!?)]}>\"'"


# -------------------- Word filter --------------------

def contains_whole_word(text: str, word: str) -> bool:
    """Return True if ``word`` occurs in ``text`` bounded by non-alphanumerics."""
    if not word:
        return False
    start = 0
    while True:
        pos = text.find(word, start)
        if pos == -1:
            return False
        end = pos + len(word)
        left_ok = pos == 0 or not text[pos - 1].isalnum()
        right_ok = end >= len(text) or not text[end].isalnum()
        if left_ok and right_ok:
            return True
        start = pos + 1


def check_word_filter(content: str, config: WordFilterConfig) -> FilterResult:
    if not config.words:
        return NOT_TRIGGERED

    lowered = content.lower()
    for word in config.words:
        word = word.lower()
        if config.match_whole_word:
            matched = contains_whole_word(lowered, word)
        else:
            matched = word in lowered
        if matched:
            return True, f"blocked word: {word}"
    return NOT_TRIGGERED


# -------------------- Regex filter --------------------

def check_regex_filter(content: str, config: RegexFilterConfig, cache: RegexCache) -> FilterResult:
    for pattern in config.patterns:
        if cache.search(pattern, content):
            return True, f"matched pattern: {pattern}"
    return NOT_TRIGGERED


# -------------------- Invite filter --------------------

def check_invite_filter(content: str, config: InviteFilterConfig) -> FilterResult:
    if INVITE_RE.search(content):
        return True, "invite link detected"
    return NOT_TRIGGERED


# -------------------- Mention spam --------------------

def check_mention_spam(content: str, config: MentionSpamConfig) -> FilterResult:
    mentions = MENTION_RE.findall(content)
    if len(mentions) >= config.max_mentions:
        return True, "too many mentions"
    return NOT_TRIGGERED


# -------------------- Caps filter --------------------

def check_caps_filter(content: str, config: CapsFilterConfig) -> FilterResult:
    letters = 0
    upper = 0
    for char in content:
        if char.isalpha():
            letters += 1
            if char.isupper():
                upper += 1

    # Short messages never trigger, however shouty
    if letters < config.min_length:
        return NOT_TRIGGERED

    percent = (upper * 100) // letters
    if percent >= config.max_caps_percent:
        return True, "excessive caps"
    return NOT_TRIGGERED


# -------------------- Link filter --------------------

def extract_urls(text: str) -> List[str]:
    """Return whitespace-delimited http(s) tokens with trailing punctuation removed."""
    urls = []
    for word in text.split():
        lowered = word.lower()
        if lowered.startswith("http://") or lowered.startswith("https://"):
            urls.append(word.rstrip(URL_TRAILING_PUNCTUATION))
    return urls


def domain_match(host: str, domains: Iterable[str]) -> bool:
    """Return True if ``host`` equals a domain or is one of its subdomains."""
    host = host.lower()
    for domain in domains:
        domain = domain.strip().lower().lstrip(".")
        if not domain:
            continue
        if host == domain or host.endswith("." + domain):
            return True
    return False


def check_link_filter(content: str, config: LinkFilterConfig) -> FilterResult:
    for raw_url in extract_urls(content):
        try:
            host = urlsplit(raw_url).hostname
        except ValueError:
            continue
        if not host:
            continue

        # An allow-list takes precedence; the block-list is ignored when set
        if config.allowed_domains:
            if not domain_match(host, config.allowed_domains):
                return True, f"link from non-allowed domain: {host}"
            continue

        if config.blocked_domains and domain_match(host, config.blocked_domains):
            return True, f"link from blocked domain: {host}"

    return NOT_TRIGGERED
