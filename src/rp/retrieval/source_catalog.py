"""
Source catalog for data source selection.

Loads curated data sources from YAML and ranks them against the sector,
function and geography of a question.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from rp.exceptions import ConfigurationError
from rp.types import (
    AccessLevel,
    DatasetDescriptor,
    RankedSource,
    RetrievalMethod,
    TrustLevel,
)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "sources.yml"

# Weights of each match dimension in the ranking score.
SECTOR_WEIGHT = 0.5
FUNCTION_WEIGHT = 0.3
GEOGRAPHY_WEIGHT = 0.2

GENERIC_SECTORS = frozenset({"general"})
GENERIC_GEOGRAPHIES = frozenset({"global"})


def _matches(value: str, candidates: list[str]) -> bool:
    needle = value.casefold().strip()
    if not needle:
        return False
    for candidate in candidates:
        c = candidate.casefold()
        if c == needle or c in needle or needle in c:
            return True
    return False


@dataclass
class CatalogSource:
    """A curated data source."""

    id: str
    name: str
    url: str
    description: str
    trust_level: TrustLevel
    access: AccessLevel
    requires_auth: bool
    sectors: list[str] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)
    geographies: list[str] = field(default_factory=list)
    update_frequency: str = "monthly"
    datasets: list[DatasetDescriptor] = field(default_factory=list)

    @classmethod
    def from_dict(cls, source_id: str, data: dict[str, Any]) -> CatalogSource:
        """Create from a YAML mapping."""
        datasets = [
            DatasetDescriptor(
                title=d["title"],
                description=d.get("description", ""),
                retrieval_method=RetrievalMethod(d.get("retrieval_method", "report")),
                url=d.get("url"),
            )
            for d in data.get("datasets", []) or []
        ]
        return cls(
            id=source_id,
            name=data["name"],
            url=data["url"],
            description=data.get("description", ""),
            trust_level=TrustLevel(data.get("trust_level", "trusted")),
            access=AccessLevel(data.get("access", "free")),
            requires_auth=bool(data.get("requires_auth", False)),
            sectors=list(data.get("sectors", [])),
            functions=list(data.get("functions", [])),
            geographies=list(data.get("geographies", [])),
            update_frequency=data.get("update_frequency", "monthly"),
            datasets=datasets,
        )

    def score(self, sector: str, function: str, geography: str) -> tuple[float, list[str]]:
        """Match score in [0, 1] and the dimensions that matched."""
        total = 0.0
        matched: list[str] = []

        if _matches(sector, self.sectors):
            total += SECTOR_WEIGHT
            matched.append("sector")
        elif any(s.casefold() in GENERIC_SECTORS for s in self.sectors):
            total += SECTOR_WEIGHT / 2

        if _matches(function, self.functions):
            total += FUNCTION_WEIGHT
            matched.append("function")

        if _matches(geography, self.geographies):
            total += GEOGRAPHY_WEIGHT
            matched.append("geography")
        elif any(g.casefold() in GENERIC_GEOGRAPHIES for g in self.geographies):
            total += GEOGRAPHY_WEIGHT / 2

        return round(total, 3), matched

    def to_ranked(self, score: float, matched: list[str]) -> RankedSource:
        return RankedSource(
            id=self.id,
            name=self.name,
            url=self.url,
            description=self.description,
            trust_level=self.trust_level,
            access=self.access,
            match_score=score,
            matched_on=tuple(matched),
            requires_auth=self.requires_auth,
        )


class SourceCatalog:
    """Catalog of curated data sources.

    Loads configuration from YAML and provides:
    - Lookup by source id
    - Ranking by sector / function / geography match
    """

    def __init__(self, config_path: Path | str | None = None) -> None:
        """Initialize the source catalog.

        Args:
            config_path: Path to a sources YAML file. If None, uses the bundled catalog.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CATALOG_PATH
        self.sources: dict[str, CatalogSource] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load and validate configuration from YAML."""
        if not self.config_path.is_file():
            raise ConfigurationError(
                "Source catalog not found",
                context={"path": str(self.config_path)},
            )

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Source catalog is not valid YAML: {e}",
                context={"path": str(self.config_path)},
            ) from e

        for source_id, data in (config.get("sources") or {}).items():
            try:
                self.sources[source_id] = CatalogSource.from_dict(source_id, data)
            except (KeyError, ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid source entry: {e}",
                    context={"path": str(self.config_path), "source": source_id},
                ) from e

    def __len__(self) -> int:
        return len(self.sources)

    def get(self, source_id: str) -> CatalogSource | None:
        """Get a source by id."""
        return self.sources.get(source_id)

    def rank(self, sector: str, function: str, geography: str) -> list[RankedSource]:
        """Rank every source with a positive score, best first.

        Ties keep catalog order.
        """
        ranked: list[RankedSource] = []
        for source in self.sources.values():
            score, matched = source.score(sector, function, geography)
            if score > 0:
                ranked.append(source.to_ranked(score, matched))
        ranked.sort(key=lambda s: s.match_score, reverse=True)
        return ranked
