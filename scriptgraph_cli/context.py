"""Run context: the components of one analysis run, built once and passed in."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import AnalysisConfig
from .duplicates import DuplicateCodeDetector
from .extractor import CompositeExtractor, DependencyExtractor
from .parser import SourceParser
from .resources import ResourceUsageScanner
from .rules import QualityRuleEngine


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass
class AnalysisContext:
    config: AnalysisConfig
    parser: SourceParser
    extractor: DependencyExtractor
    rule_engine: QualityRuleEngine
    resource_scanner: ResourceUsageScanner
    duplicate_detector: DuplicateCodeDetector
    clock: Callable[[], datetime] = utc_now

    @classmethod
    def create(
        cls,
        config: Optional[AnalysisConfig] = None,
        parser: Optional[SourceParser] = None,
        extractor: Optional[DependencyExtractor] = None,
        rule_engine: Optional[QualityRuleEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "AnalysisContext":
        config = config or AnalysisConfig()
        return cls(
            config=config,
            parser=parser or SourceParser(),
            extractor=extractor or CompositeExtractor(),
            rule_engine=rule_engine or QualityRuleEngine(disabled=config.disabled_rules),
            resource_scanner=ResourceUsageScanner(),
            duplicate_detector=DuplicateCodeDetector(window=config.duplicate_window),
            clock=clock or utc_now,
        )
