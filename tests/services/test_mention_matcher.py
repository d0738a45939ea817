from __future__ import annotations

from roadmap.models.project import RepositorySnapshot
from roadmap.services.mention_matcher import MatchType, build_match_terms, match_mention


def test_terms_cover_title_segments_slugs_and_repository(make_record) -> None:
    record = make_record(
        "Stacks Explorer | Block Browser",
        repository_url="https://github.com/acme/stacks-explorer/",
        snapshot=RepositorySnapshot(homepage="https://explorer.example.org"),
        search_terms=["  SXP  ", "ab"],
    )

    terms = {term.text: term.type for term in build_match_terms(record, generic_hosts=["github.com"])}

    assert terms["stacks explorer | block browser"] == MatchType.TITLE
    assert terms["stacks explorer"] == MatchType.TITLE
    assert terms["block browser"] == MatchType.TITLE
    assert terms["stacks-explorer"] == MatchType.SLUG
    assert terms["https://github.com/acme/stacks-explorer/"] == MatchType.URL
    assert terms["acme/stacks-explorer"] == MatchType.URL
    assert terms["explorer.example.org"] == MatchType.SITE
    assert terms["sxp"] == MatchType.ALIAS
    assert "ab" not in terms


def test_title_match_is_case_insensitive(make_record) -> None:
    record = make_record("Stacks Explorer")

    assert match_mention("Just shipped a STACKS EXPLORER update", record) == MatchType.TITLE
    assert match_mention("nothing relevant here", record) is None
    assert match_mention(None, record) is None


def test_short_repository_name_needs_owner(make_record) -> None:
    record = make_record("Sentinel Monitor", repository_url="https://github.com/acme/sbtc")

    assert match_mention("new sbtc bridge numbers are out", record) is None
    assert match_mention("see github.com/acme/sbtc for details", record) == MatchType.URL


def test_long_repository_name_matches_with_spaces(make_record) -> None:
    record = make_record("Sentinel", repository_url="https://github.com/acme/ordinal-indexer")

    assert match_mention("the ordinal indexer is live", record) == MatchType.URL


def test_generic_homepage_host_is_ignored(make_record) -> None:
    record = make_record(
        "Sentinel",
        repository_url=None,
        snapshot=RepositorySnapshot(homepage="https://aibtc.com/tools"),
    )

    texts = [term.text for term in build_match_terms(record, generic_hosts=["aibtc.com"])]

    assert "aibtc.com" not in texts


def test_terms_are_deduplicated(make_record) -> None:
    record = make_record("Explorer", repository_url=None, search_terms=["explorer", "Explorer"])

    texts = [term.text for term in build_match_terms(record)]

    assert texts == ["explorer"]
