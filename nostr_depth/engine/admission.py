"""
Admission policies for incoming order records.

A policy decides whether a pending record may enter the live book at all,
before normalization. Policies are small immutable objects so they can sit
inside the frozen FeedConfig and be swapped in tests.

Variants:
- AllowList: publisher key allow-list, optionally also admitting records
  whose "y" source tag names a trusted platform
- PremiumBound: declared premium within +/- max_abs percent
- SourceTag: "y" source tag in a fixed set
- AllOf / AnyOf: combinators
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..types import RawRecord, parse_float

DEFAULT_MAX_PREMIUM = 40.0

# Unparseable premium counts as this magnitude, i.e. always out of bounds
UNPARSEABLE_PREMIUM = 100.0


class AdmissionPolicy(Protocol):
    kind: str

    def admits(self, record: RawRecord) -> bool: ...


@dataclass(frozen=True)
class AllowList:
    pubkeys: frozenset[str]
    trusted_sources: frozenset[str] = frozenset()
    kind: str = "allow-list"

    def admits(self, record: RawRecord) -> bool:
        if record.pubkey in self.pubkeys:
            return True
        return record.tag_value("y") in self.trusted_sources


@dataclass(frozen=True)
class PremiumBound:
    max_abs: float = DEFAULT_MAX_PREMIUM
    kind: str = "premium-bound"

    def admits(self, record: RawRecord) -> bool:
        premium = parse_float(record.tag_value("premium"))
        if premium is None:
            premium = UNPARSEABLE_PREMIUM
        return -self.max_abs <= premium <= self.max_abs


@dataclass(frozen=True)
class SourceTag:
    sources: frozenset[str]
    kind: str = "source-tag"

    def admits(self, record: RawRecord) -> bool:
        return record.tag_value("y") in self.sources


@dataclass(frozen=True)
class AllOf:
    policies: tuple[AdmissionPolicy, ...]
    kind: str = "all-of"

    def admits(self, record: RawRecord) -> bool:
        return all(p.admits(record) for p in self.policies)


@dataclass(frozen=True)
class AnyOf:
    policies: tuple[AdmissionPolicy, ...]
    kind: str = "any-of"

    def admits(self, record: RawRecord) -> bool:
        return any(p.admits(record) for p in self.policies)


def describe(policy: AdmissionPolicy) -> str:
    """Short human-readable label for logs and the status bar."""
    if isinstance(policy, PremiumBound):
        return f"premium within ±{policy.max_abs:g}%"
    if isinstance(policy, AllowList):
        label = f"{len(policy.pubkeys)} allowed keys"
        if policy.trusted_sources:
            label += " or source in " + ",".join(sorted(policy.trusted_sources))
        return label
    if isinstance(policy, SourceTag):
        return "source in " + ",".join(sorted(policy.sources))
    if isinstance(policy, (AllOf, AnyOf)):
        joiner = " and " if isinstance(policy, AllOf) else " or "
        return "(" + joiner.join(describe(p) for p in policy.policies) + ")"
    return policy.kind
