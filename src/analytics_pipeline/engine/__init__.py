"""In-memory aggregation engine.

The engine evaluates declarative pipelines (see `stages`) over iterables of
nested documents. Typical use::

    from analytics_pipeline.engine import Pipeline, execute
    from analytics_pipeline.engine.stages import Filter, Group
    from analytics_pipeline.engine import expressions as ex, filters as fl, grouping as acc

    pipeline = Pipeline.of(
        Filter(predicate=fl.where(fl.gte("year", 2000))),
        Group(key=ex.field("genre"), accumulators={"n": acc.Count()}),
    )
    rows = execute(pipeline, documents)
"""

from analytics_pipeline.engine.paths import MISSING
from analytics_pipeline.engine.runner import execute
from analytics_pipeline.engine.stages import Pipeline

__all__ = ["MISSING", "Pipeline", "execute"]
