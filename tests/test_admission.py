from __future__ import annotations

from nostr_depth.config import KNOWN_PUBLISHERS, FeedConfig
from nostr_depth.engine.admission import (
    AllOf,
    AllowList,
    AnyOf,
    PremiumBound,
    SourceTag,
    describe,
)

from conftest import BUYER, SELLER


def test_premium_bound_is_inclusive(make_record):
    policy = PremiumBound(10)

    assert policy.admits(make_record(premium="10"))
    assert policy.admits(make_record(premium="-10"))
    assert not policy.admits(make_record(premium="10.01"))


def test_premium_bound_rejects_unparseable(make_record):
    assert not PremiumBound().admits(make_record(premium="cheap"))
    assert not PremiumBound().admits(make_record(premium=None))


def test_source_tag(make_record):
    policy = SourceTag(frozenset({"mostro"}))

    assert policy.admits(make_record(source="mostro"))
    assert not policy.admits(make_record(source="robosats"))
    assert not policy.admits(make_record(source=None))


def test_allow_list(make_record):
    policy = AllowList(frozenset({SELLER}))

    assert policy.admits(make_record(pubkey=SELLER))
    assert not policy.admits(make_record(pubkey=BUYER))


def test_combinators(make_record):
    trusted = AllowList(frozenset({SELLER}))
    bounded = PremiumBound(5)

    assert not AllOf((trusted, bounded)).admits(make_record(pubkey=SELLER, premium="8"))
    assert AnyOf((trusted, bounded)).admits(make_record(pubkey=SELLER, premium="8"))
    assert AnyOf((trusted, bounded)).admits(make_record(pubkey=BUYER, premium="1"))
    assert not AnyOf((trusted, bounded)).admits(make_record(pubkey=BUYER, premium="8"))


def test_default_config_policy():
    config = FeedConfig()

    assert config.admission.kind == "premium-bound"
    assert config.admission.max_abs == 40.0


def test_config_allow_list_helper(make_record):
    config = FeedConfig().with_allow_list()

    assert config.admission.kind == "allow-list"
    assert config.admission.pubkeys == KNOWN_PUBLISHERS
    assert config.admission.admits(make_record(pubkey=BUYER, source="mostro"))


def test_describe():
    assert describe(PremiumBound(40)) == "premium within ±40%"
    assert describe(SourceTag(frozenset({"b", "a"}))) == "source in a,b"
    assert describe(AllOf((PremiumBound(5), SourceTag(frozenset({"x"}))))) == (
        "(premium within ±5% and source in x)"
    )
