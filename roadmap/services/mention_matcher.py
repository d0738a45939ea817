"""Match free-text messages against project records."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from roadmap.config.settings import settings
from roadmap.crawlers.github.snapshots import parse_repository_url
from roadmap.models.project import ProjectRecord
from roadmap.utils.helpers import hostname_of, slugify

TITLE_SEPARATORS = re.compile(r"\s*[—–|]\s*")
MIN_SEGMENT_LENGTH = 4
MIN_SLUG_LENGTH = 4
MIN_REPO_NAME_LENGTH = 8
MIN_SITE_HOST_LENGTH = 6
MIN_ALIAS_LENGTH = 3


class MatchType(str, Enum):
    TITLE = "title"
    SLUG = "slug"
    URL = "url"
    SITE = "site"
    ALIAS = "alias"


@dataclass(frozen=True, slots=True)
class MatchTerm:
    text: str
    type: MatchType


def build_match_terms(
    record: ProjectRecord,
    *,
    generic_hosts: Optional[Iterable[str]] = None,
) -> list[MatchTerm]:
    """Ordered, de-duplicated terms whose presence in a message means a mention.

    Short product names, slugs, repository names and hostnames are held to
    minimum lengths so common words do not count as mentions.
    """
    terms: list[MatchTerm] = []
    title = (record.title or "").strip().lower()

    if title:
        terms.append(MatchTerm(title, MatchType.TITLE))

    segments = [part.strip() for part in TITLE_SEPARATORS.split(title)] if title else []
    segments = [part for part in segments if len(part) >= MIN_SEGMENT_LENGTH]
    for segment in segments:
        if segment != title:
            terms.append(MatchTerm(segment, MatchType.TITLE))

    for source in ([title] if title else []) + segments:
        slug = slugify(source)
        if len(slug) >= MIN_SLUG_LENGTH and slug != source:
            terms.append(MatchTerm(slug, MatchType.SLUG))

    ref = parse_repository_url(record.repository_url)
    if ref is not None and record.repository_url:
        terms.append(MatchTerm(record.repository_url.lower(), MatchType.URL))
        terms.append(MatchTerm(ref.path.lower(), MatchType.URL))
        repo_name = ref.repo.lower()
        if len(repo_name) >= MIN_REPO_NAME_LENGTH:
            terms.append(MatchTerm(repo_name, MatchType.URL))
            spaced = repo_name.replace("-", " ")
            if spaced != repo_name:
                terms.append(MatchTerm(spaced, MatchType.URL))

    homepage = record.snapshot.homepage if record.snapshot else None
    host = hostname_of(homepage) if homepage else None
    generic = set(generic_hosts if generic_hosts is not None else settings.GENERIC_HOMEPAGE_HOSTS)
    if host and host not in generic and len(host) >= MIN_SITE_HOST_LENGTH:
        terms.append(MatchTerm(host, MatchType.SITE))

    for alias in record.search_terms:
        text = alias.strip().lower()
        if len(text) >= MIN_ALIAS_LENGTH:
            terms.append(MatchTerm(text, MatchType.ALIAS))

    seen: set[str] = set()
    unique: list[MatchTerm] = []
    for term in terms:
        if term.text in seen:
            continue
        seen.add(term.text)
        unique.append(term)
    return unique


def match_mention(
    text: Optional[str],
    record: ProjectRecord,
    *,
    terms: Optional[list[MatchTerm]] = None,
) -> Optional[MatchType]:
    """Provenance of the first term found in ``text``, or None."""
    if not text:
        return None
    haystack = text.lower()
    for term in terms if terms is not None else build_match_terms(record):
        if term.text in haystack:
            return term.type
    return None
