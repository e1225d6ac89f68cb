"""Declarative stage descriptors and pipeline validation.

A pipeline is data: an ordered tuple of Stage models, each tagged with a
``kind`` discriminator so that a pipeline can also be loaded from plain
dictionaries. `Pipeline.of(...)` runs a validation pass over the whole
description (including facet sub-pipelines) and raises
`StageConfigurationError` before a single document is read.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from analytics_pipeline.engine.expressions import Expression
from analytics_pipeline.engine.filters import Predicate
from analytics_pipeline.engine.grouping import Accumulator, TopFrequent
from analytics_pipeline.engine.grouping import TopN as TopNAccumulator
from analytics_pipeline.engine.paths import validate_path
from analytics_pipeline.errors import StageConfigurationError

ID_FIELD = "_id"


def _validate_sort_keys(keys: tuple[tuple[str, int], ...]) -> tuple[tuple[str, int], ...]:
    for path, direction in keys:
        validate_path(path)
        if direction not in (1, -1):
            raise StageConfigurationError(f"sort direction for {path!r} must be 1 or -1")
    return keys


class _Stage(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise StageConfigurationError(
                f"invalid {type(self).__name__} stage: {exc}"
            ) from exc


class Filter(_Stage):
    """Keep documents satisfying every condition of `predicate`."""

    kind: Literal["filter"] = "filter"
    predicate: Predicate


class Derive(_Stage):
    """Attach computed fields, in order; later fields see earlier ones.

    `on_error` decides what an `ExpressionError` does: ``"null"`` stores
    ``None`` and carries on, ``"raise"`` aborts. ``None`` defers to the run's
    strict setting.
    """

    kind: Literal["derive"] = "derive"
    fields: dict[str, Expression]
    on_error: Literal["null", "raise"] | None = None

    @field_validator("fields")
    @classmethod
    def _check_names(cls, v: dict[str, Expression]) -> dict[str, Expression]:
        for name in v:
            validate_path(name)
            if name.split(".")[0] == ID_FIELD:
                raise StageConfigurationError("derived fields may not overwrite _id")
        return v


class Expand(_Stage):
    """Unwind the sequence at `path` into one document per element."""

    kind: Literal["expand"] = "expand"
    path: str
    preserve_empty: bool = False

    @field_validator("path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        return validate_path(v)


class Group(_Stage):
    """Group by `key` and emit one document per group."""

    kind: Literal["group"] = "group"
    key: Union[Expression, dict[str, Expression], None] = None
    accumulators: dict[str, Accumulator]

    @field_validator("key")
    @classmethod
    def _check_key(cls, v: Any) -> Any:
        if isinstance(v, dict):
            if not v:
                raise StageConfigurationError("group key mapping must not be empty")
            for name in v:
                if "." in validate_path(name):
                    raise StageConfigurationError(f"group key name {name!r} may not contain '.'")
        return v

    @field_validator("accumulators")
    @classmethod
    def _check_accumulators(cls, v: dict[str, Accumulator]) -> dict[str, Accumulator]:
        for name, spec in v.items():
            if name == ID_FIELD:
                raise StageConfigurationError("accumulator name conflicts with _id")
            if "." in validate_path(name):
                raise StageConfigurationError(f"accumulator name {name!r} may not contain '.'")
            if isinstance(spec, (TopFrequent, TopNAccumulator)) and spec.n < 1:
                raise StageConfigurationError(f"accumulator {name!r} needs n >= 1, got {spec.n}")
        return v


class Project(_Stage):
    """Reshape documents: keep listed paths (``True``) or compute new fields.

    `_id` is carried over unless `keep_id` is False or `fields` names it.
    """

    kind: Literal["project"] = "project"
    fields: dict[str, Union[Expression, Literal[True]]]
    keep_id: bool = True

    @field_validator("fields")
    @classmethod
    def _check_fields(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v:
            raise StageConfigurationError("project needs at least one field")
        for name in v:
            validate_path(name)
        return v


class Sort(_Stage):
    """Stable sort by (path, direction) keys, direction -1 = descending."""

    kind: Literal["sort"] = "sort"
    keys: tuple[tuple[str, int], ...] = Field(..., min_length=1)

    @field_validator("keys")
    @classmethod
    def _check_keys(cls, v: tuple[tuple[str, int], ...]) -> tuple[tuple[str, int], ...]:
        return _validate_sort_keys(v)


class Limit(_Stage):
    kind: Literal["limit"] = "limit"
    n: int = Field(..., ge=0)


class TopN(_Stage):
    """Keep the best `n` documents by `sort_by`, optionally per group.

    With `per_group` set, documents are partitioned by the values at those
    paths; partitions are emitted in order of first appearance, each best first.
    """

    kind: Literal["topN"] = "topN"
    n: int = Field(..., ge=1)
    sort_by: tuple[tuple[str, int], ...] = Field(..., min_length=1)
    per_group: tuple[str, ...] | None = None

    @field_validator("sort_by")
    @classmethod
    def _check_sort_by(cls, v: tuple[tuple[str, int], ...]) -> tuple[tuple[str, int], ...]:
        return _validate_sort_keys(v)

    @field_validator("per_group")
    @classmethod
    def _check_per_group(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if v is not None:
            for path in v:
                validate_path(path)
        return v


class Facet(_Stage):
    """Run independent sub-pipelines over the same input snapshot."""

    kind: Literal["facet"] = "facet"
    facets: dict[str, "Pipeline"]

    @field_validator("facets", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {
                name: Pipeline.of(*p) if isinstance(p, (list, tuple)) else p
                for name, p in v.items()
            }
        return v

    @field_validator("facets")
    @classmethod
    def _check_facets(cls, v: dict[str, "Pipeline"]) -> dict[str, "Pipeline"]:
        if not v:
            raise StageConfigurationError("facet needs at least one sub-pipeline")
        for name, pipeline in v.items():
            if "." in validate_path(name):
                raise StageConfigurationError(f"facet name {name!r} may not contain '.'")
            if any(isinstance(s, Facet) for s in pipeline.stages):
                raise StageConfigurationError(f"facet {name!r} may not contain a nested facet")
        return v


Stage = Annotated[
    Union[Filter, Derive, Expand, Group, Project, Sort, Limit, TopN, Facet],
    Field(discriminator="kind"),
]


class Pipeline(BaseModel):
    """An ordered, validated sequence of stages."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stages: tuple[Stage, ...]

    @classmethod
    def of(cls, *stages: Any) -> "Pipeline":
        """Build and validate a pipeline from stage models or plain dicts.

        Raises:
            StageConfigurationError: if any stage is malformed.
        """
        try:
            pipeline = cls(stages=tuple(stages))
        except ValidationError as exc:
            raise StageConfigurationError(f"invalid pipeline: {exc}") from exc
        validate_pipeline(pipeline)
        return pipeline

    def __len__(self) -> int:
        return len(self.stages)


Facet.model_rebuild()
Pipeline.model_rebuild()


def _overlaps(ref: str, name: str) -> bool:
    return ref == name or ref.startswith(name + ".") or name.startswith(ref + ".")


def validate_pipeline(pipeline: Pipeline) -> None:
    """Semantic checks that span fields of a stage.

    Raises:
        StageConfigurationError: when a derived field reads a field that is only
            derived later in the same stage.
    """
    for position, stage in enumerate(pipeline.stages):
        if isinstance(stage, Derive):
            names = list(stage.fields)
            for index, name in enumerate(names):
                later = names[index + 1 :]
                for ref in stage.fields[name].references():
                    for other in later:
                        if _overlaps(ref, other):
                            raise StageConfigurationError(
                                f"stage {position}: {name!r} reads {ref!r} "
                                f"before it is derived"
                            )
        elif isinstance(stage, Facet):
            for sub in stage.facets.values():
                validate_pipeline(sub)
