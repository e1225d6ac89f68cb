"""analytics_pipeline package.

Contains an in-memory aggregation pipeline engine for nested documents and the
two analyses built on top of it (movie analytics over `sample_mflix.movies` and
market analytics over `sample_airbnb.listingsAndReviews`).

Architecture:
- Documents are streamed from MongoDB (or any iterable of mappings)
- Pipelines are declarative lists of pydantic Stage models
- Faceted sub-pipelines are fanned out as Dask delayed tasks
- Results are written to JSON / MongoDB and summarised with pandas
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
