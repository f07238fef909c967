"""Metadata providers the manifest builder consults per asset.

Contribution metrics and cognitive proofs are produced outside the core;
the builder only stores what the providers hand back.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from hcpcore.canonical import OrderedObject


@dataclass(frozen=True)
class ContributionMetric:
    """Per-file contribution metric (revision count and a 0-100 score)."""

    commits: int
    score: float

    def to_payload(self) -> OrderedObject:
        return OrderedObject(commits=self.commits, aha_score=self.score)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.to_payload())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContributionMetric:
        return cls(commits=int(data["commits"]), score=float(data["aha_score"]))


class ContributionProvider(Protocol):
    def metric_for(self, path: str) -> ContributionMetric | None:
        """Metric for a root-relative path, or None to leave it out."""
        ...


class CognitiveProofProvider(Protocol):
    def proof_for(self, path: str) -> Mapping[str, Any] | None:
        """Opaque proof object for a root-relative path, or None."""
        ...


class StaticContributions:
    """Contribution metrics taken from a precomputed mapping."""

    def __init__(self, metrics: Mapping[str, ContributionMetric]) -> None:
        self._metrics = dict(metrics)

    def metric_for(self, path: str) -> ContributionMetric | None:
        return self._metrics.get(path)

    @classmethod
    def from_json(cls, path: Path) -> StaticContributions:
        """Load ``{"path": {"commits": n, "aha_score": x}}`` from a file."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls({key: ContributionMetric.from_dict(value) for key, value in data.items()})


class StaticProofs:
    """Cognitive proofs taken from a precomputed mapping."""

    def __init__(self, proofs: Mapping[str, Mapping[str, Any]]) -> None:
        self._proofs = dict(proofs)

    def proof_for(self, path: str) -> Mapping[str, Any] | None:
        return self._proofs.get(path)

    @classmethod
    def from_json(cls, path: Path) -> StaticProofs:
        with open(path, encoding="utf-8") as f:
            return cls(json.load(f))
