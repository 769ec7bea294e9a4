"""
End-to-end analysis: sales points in, ranked hypotheses out.

    aggregate -> detect -> (per anomaly, in parallel) rank -> generate

Detection runs per product; ranking and hypothesis generation run per anomaly
on a thread pool. The exogenous series are read-only snapshots shared by all
workers. A failure while analyzing one product or one anomaly is logged and
recorded in the report; the rest of the batch carries on.

Usage:
    pipeline = AnomalyPipeline(EngineConfig.from_env())
    report = pipeline.analyze(points, exogenous)
    for analysis in report.analyses:
        print(analysis.anomaly.summary(), analysis.hypotheses[0].title)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from hunt_analytics.brain.hypothesis import HypothesisGenerator
from hunt_analytics.config import EngineConfig
from hunt_analytics.core.aggregation import TimeSeriesAggregator
from hunt_analytics.core.correlation import CorrelationRanker
from hunt_analytics.core.detector import AnomalyDetector
from hunt_analytics.core.models import (
    Anomaly,
    AnomalyAnalysis,
    ExogenousSeries,
    Granularity,
    SalesPoint,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisFailure:
    """An anomaly (or a whole product) the pipeline could not analyze."""

    key: str
    stage: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "stage": self.stage,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class PipelineReport:
    analyses: list[AnomalyAnalysis] = field(default_factory=list)
    failures: list[AnalysisFailure] = field(default_factory=list)

    @property
    def anomalies(self) -> list[Anomaly]:
        return [a.anomaly for a in self.analyses]

    def to_dict(self) -> dict[str, Any]:
        return {
            "analyses": [a.to_dict() for a in self.analyses],
            "failures": [f.to_dict() for f in self.failures],
        }


class AnomalyPipeline:
    """Wires aggregation, detection, ranking and hypothesis generation together."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        aggregator: Optional[TimeSeriesAggregator] = None,
        detector: Optional[AnomalyDetector] = None,
        ranker: Optional[CorrelationRanker] = None,
        generator: Optional[HypothesisGenerator] = None,
        max_workers: int = 4,
    ):
        self.config = config or EngineConfig()
        self.aggregator = aggregator or TimeSeriesAggregator()
        self.detector = detector or AnomalyDetector(self.config.detection)
        self.ranker = ranker or CorrelationRanker(self.config.correlation)
        self.generator = generator or HypothesisGenerator(self.config.hypothesis)
        self.max_workers = max_workers

    def analyze_anomaly(
        self,
        anomaly: Anomaly,
        sales: Sequence[SalesPoint],
        exogenous: Sequence[ExogenousSeries],
    ) -> AnomalyAnalysis:
        correlations = self.ranker.rank(anomaly, sales, exogenous)
        hypotheses = self.generator.generate(anomaly, correlations)
        return AnomalyAnalysis(
            anomaly=anomaly,
            correlations=tuple(correlations),
            hypotheses=tuple(hypotheses),
        )

    def analyze(
        self,
        points: Iterable[SalesPoint],
        exogenous: Iterable[ExogenousSeries] = (),
        granularity: Union[Granularity, str] = Granularity.DAY,
    ) -> PipelineReport:
        """Detect anomalies in every product and explain each one."""
        granularity = Granularity(granularity)
        exogenous = list(exogenous)
        report = PipelineReport()

        by_product: dict[str, list[SalesPoint]] = defaultdict(list)
        for p in points:
            by_product[p.product_id].append(p)

        jobs: list[tuple[Anomaly, list[SalesPoint]]] = []
        for product_id, product_points in by_product.items():
            try:
                anomalies = self.detector.detect_points(product_points, granularity, self.aggregator)
            except Exception as e:
                logger.error(f"Detection failed for {product_id}: {e}", exc_info=True)
                report.failures.append(AnalysisFailure(product_id, "detect", type(e).__name__, str(e)))
                continue
            jobs.extend((a, product_points) for a in anomalies)

        if not jobs:
            logger.info(f"No anomalies found across {len(by_product)} products")
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_anomaly = {
                executor.submit(self.analyze_anomaly, anomaly, sales, exogenous): anomaly
                for anomaly, sales in jobs
            }
            for future in as_completed(future_to_anomaly):
                anomaly = future_to_anomaly[future]
                try:
                    report.analyses.append(future.result())
                except Exception as e:
                    logger.error(f"Analysis failed for {anomaly.ref}: {e}", exc_info=True)
                    report.failures.append(AnalysisFailure(anomaly.ref, "analyze", type(e).__name__, str(e)))

        report.analyses.sort(key=lambda a: (a.anomaly.date, a.anomaly.product_id))
        logger.info(
            f"Analyzed {len(report.analyses)} anomalies across {len(by_product)} products "
            f"({len(report.failures)} failures)"
        )
        return report
