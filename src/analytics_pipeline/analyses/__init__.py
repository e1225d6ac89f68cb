"""Concrete analyses built on the aggregation engine.

`movies` and `listings` define the pipelines; `orchestrator` registers them,
runs them against a document source and assembles the summary document.
"""

from analytics_pipeline.analyses.orchestrator import (
    ANALYSES,
    Analysis,
    get_analysis,
    run_named,
    run_pipeline,
)

__all__ = ["ANALYSES", "Analysis", "get_analysis", "run_named", "run_pipeline"]
