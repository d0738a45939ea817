"""Deployment URL scoring, extraction and cross-record claim arbitration."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import urlsplit

from roadmap.config.settings import settings
from roadmap.models.activity import ActivityEntry
from roadmap.models.project import Deliverable, ProjectRecord, Website, WebsiteSource
from roadmap.services.mention_matcher import build_match_terms, match_mention
from roadmap.utils.helpers import hostname_of, utc_now

NOISE_HOSTS = frozenset(
    {
        "github.com",
        "www.github.com",
        "docs.github.com",
        "raw.githubusercontent.com",
        "user-images.githubusercontent.com",
        "avatars.githubusercontent.com",
        "camo.githubusercontent.com",
        "npmjs.com",
        "www.npmjs.com",
        "shields.io",
        "img.shields.io",
        "badge.fury.io",
        "coveralls.io",
        "codecov.io",
        "travis-ci.org",
        "travis-ci.com",
        "circleci.com",
        "david-dm.org",
        "gitter.im",
        "localhost",
        "example.com",
        "crates.io",
        "pypi.org",
        "rubygems.org",
        "bun.sh",
        "bun.com",
        "deno.land",
        "deno.com",
        "nodejs.org",
    }
)

# Profile links, API endpoints, install scripts, raw files
NOISE_PATH_PATTERNS = (
    re.compile(r"^/agents/"),
    re.compile(r"^/api/"),
    re.compile(r"^/install\b"),
    re.compile(r"^/raw/"),
)

PLATFORM_SUFFIX_SCORES = (
    (".pages.dev", 10),
    (".vercel.app", 10),
    (".netlify.app", 10),
    (".workers.dev", 9),
    (".herokuapp.com", 8),
    (".fly.dev", 8),
    (".web.app", 8),
    (".firebaseapp.com", 8),
    (".onrender.com", 8),
    (".surge.sh", 7),
    (".github.io", 7),
)
CUSTOM_DOMAIN_SCORE = 6
CUSTOM_DOMAIN_EXCLUDED_FRAGMENTS = ("github", "npm")

URL_PATTERN = re.compile(r"https?://[^\s<>\[\]()'\"`,;]+", re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r"[.)]+$")

CONTEXT_KEYWORDS = re.compile(
    r"\b(live|demo|website|deployed|homepage|visit|hosted|app|try it|production|dashboard)\b",
    re.IGNORECASE,
)
ATTRIBUTION_KEYWORDS = re.compile(
    r"\b(built by|created by|credits|author|maintained by|made by|powered by)\b",
    re.IGNORECASE,
)
CONTEXT_WINDOW_CHARS = 200
CONTEXT_BONUS = 5
ATTRIBUTION_PENALTY = 4
MIN_CANDIDATE_SCORE = 5


@dataclass(frozen=True, slots=True)
class WebsiteCandidate:
    url: str
    source: WebsiteSource

    def to_website(self, discovered_at: Optional[datetime] = None) -> Website:
        return Website(url=self.url, source=self.source, discovered_at=discovered_at or utc_now())


@dataclass(frozen=True, slots=True)
class InvalidClaim:
    record_id: str
    url: str
    reason: str


def score_url(url: Optional[str]) -> int:
    """0 for noise, otherwise how strongly the host looks like a deployment."""
    if not url:
        return 0
    try:
        parts = urlsplit(url.strip())
        host = (parts.hostname or "").lower()
    except ValueError:
        return 0
    if not host or parts.scheme not in ("http", "https"):
        return 0
    if host in NOISE_HOSTS:
        return 0
    path = parts.path or "/"
    if any(pattern.search(path) for pattern in NOISE_PATH_PATTERNS):
        return 0
    for suffix, score in PLATFORM_SUFFIX_SCORES:
        if host.endswith(suffix):
            return score
    if any(fragment in host for fragment in CUSTOM_DOMAIN_EXCLUDED_FRAGMENTS):
        return 0
    return CUSTOM_DOMAIN_SCORE


def extract_urls(text: Optional[str]) -> list[str]:
    if not text:
        return []
    return [TRAILING_PUNCTUATION.sub("", match) for match in URL_PATTERN.findall(text)]


def is_self_hosted(url: str, self_hosts: Optional[Iterable[str]] = None) -> bool:
    hosts = set(self_hosts if self_hosts is not None else settings.SELF_HOSTS)
    return hostname_of(url) in hosts


def url_from_homepage(homepage: Optional[str], *, skip: frozenset[str] | set[str] = frozenset()) -> Optional[str]:
    if not homepage or homepage in skip:
        return None
    return homepage if score_url(homepage) > 0 else None


def url_from_description(description: Optional[str], *, skip: frozenset[str] | set[str] = frozenset()) -> Optional[str]:
    scored = [(score_url(url), url) for url in extract_urls(description) if url not in skip]
    scored = [item for item in scored if item[0] >= MIN_CANDIDATE_SCORE]
    if not scored:
        return None
    best_score = max(score for score, _ in scored)
    return next(url for score, url in scored if score == best_score)


def url_from_readme(content: Optional[str], *, skip: frozenset[str] | set[str] = frozenset()) -> Optional[str]:
    """Best README URL, boosted near "demo"-style wording and penalized near credits."""
    if not content:
        return None
    best_url: Optional[str] = None
    best_score = MIN_CANDIDATE_SCORE - 1
    for url in extract_urls(content):
        if url in skip:
            continue
        score = score_url(url)
        if score <= 0:
            continue
        position = content.find(url)
        if position != -1:
            window = content[max(0, position - CONTEXT_WINDOW_CHARS):position]
            if CONTEXT_KEYWORDS.search(window):
                score += CONTEXT_BONUS
            if ATTRIBUTION_KEYWORDS.search(window):
                score -= ATTRIBUTION_PENALTY
        if score > best_score:
            best_url, best_score = url, score
    return best_url


def url_from_deliverables(
    deliverables: Iterable[Deliverable],
    *,
    skip: frozenset[str] | set[str] = frozenset(),
    self_hosts: Optional[Iterable[str]] = None,
) -> Optional[str]:
    for deliverable in deliverables:
        url = deliverable.url
        if not url or url in skip or score_url(url) == 0:
            continue
        if is_self_hosted(url, self_hosts):
            continue
        return url
    return None


def url_from_messages(
    messages: Iterable[ActivityEntry],
    record: ProjectRecord,
    *,
    skip: frozenset[str] | set[str] = frozenset(),
    self_hosts: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """Most frequently shared URL in messages that mention ``record``; score breaks ties."""
    terms = build_match_terms(record)
    counts: Counter[str] = Counter()
    for message in messages:
        if match_mention(message.message_preview, record, terms=terms) is None:
            continue
        for url in extract_urls(message.message_preview):
            if url in skip or score_url(url) == 0 or is_self_hosted(url, self_hosts):
                continue
            counts[url] += 1
    if not counts:
        return None
    # first-seen order wins full ties
    ranked = sorted(counts.items(), key=lambda item: (item[1], score_url(item[0])), reverse=True)
    return ranked[0][0]


def discover_from_repository(
    record: ProjectRecord,
    *,
    claimed_urls: frozenset[str] | set[str] = frozenset(),
) -> Optional[WebsiteCandidate]:
    """Candidates available from the snapshot alone (homepage, then description)."""
    snapshot = record.snapshot
    if snapshot is None:
        return None
    homepage = url_from_homepage(snapshot.homepage, skip=claimed_urls)
    if homepage:
        return WebsiteCandidate(homepage, WebsiteSource.HOMEPAGE)
    description_url = url_from_description(snapshot.description or snapshot.title, skip=claimed_urls)
    if description_url:
        return WebsiteCandidate(description_url, WebsiteSource.DESCRIPTION)
    return None


def discover_website(
    record: ProjectRecord,
    *,
    claimed_urls: frozenset[str] | set[str] = frozenset(),
    readme: Optional[str] = None,
    messages: Iterable[ActivityEntry] = (),
    self_hosts: Optional[Iterable[str]] = None,
) -> Optional[WebsiteCandidate]:
    """First hit of homepage, description, README, deliverables, messages.

    URLs in ``claimed_urls`` belong to other records and are never returned.
    """
    candidate = discover_from_repository(record, claimed_urls=claimed_urls)
    if candidate is not None:
        return candidate

    readme_url = url_from_readme(readme, skip=claimed_urls)
    if readme_url:
        return WebsiteCandidate(readme_url, WebsiteSource.README)

    deliverable_url = url_from_deliverables(record.deliverables, skip=claimed_urls, self_hosts=self_hosts)
    if deliverable_url:
        return WebsiteCandidate(deliverable_url, WebsiteSource.DELIVERABLE)

    message_url = url_from_messages(messages, record, skip=claimed_urls, self_hosts=self_hosts)
    if message_url:
        return WebsiteCandidate(message_url, WebsiteSource.MESSAGE)
    return None


def find_invalid_claims(records: Iterable[ProjectRecord]) -> list[InvalidClaim]:
    """Claims that must be cleared so every website URL has one holder.

    A claim is invalid when its URL now scores zero, when a homepage-sourced
    claim on another record holds the same URL, or when an earlier record
    already holds it.
    """
    invalid: list[InvalidClaim] = []
    holders: dict[str, list[ProjectRecord]] = {}
    for record in records:
        if record.website is None:
            continue
        url = record.website.url
        if score_url(url) == 0:
            invalid.append(InvalidClaim(record.id, url, "zero_score"))
            continue
        holders.setdefault(url, []).append(record)

    for url, group in holders.items():
        if len(group) < 2:
            continue
        homepage_holders = [record for record in group if record.website.source == WebsiteSource.HOMEPAGE]
        keeper = homepage_holders[0] if homepage_holders else group[0]
        for record in group:
            if record is keeper:
                continue
            if homepage_holders and record.website.source != WebsiteSource.HOMEPAGE:
                reason = "displaced_by_homepage"
            else:
                reason = "duplicate"
            invalid.append(InvalidClaim(record.id, url, reason))
    return invalid
