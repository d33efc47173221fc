from __future__ import annotations

import enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, conint, model_validator

from docbrowser.filtermodel.contracts import Predicate, RowKey


# ---------- Enums ----------
class QueryMode(str, enum.Enum):
    browse = "browse"
    fulltext = "fulltext"
    vector = "vector"


class RankingMode(str, enum.Enum):
    simple = "simple"
    expression = "expression"


class SortDirection(str, enum.Enum):
    asc = "asc"
    desc = "desc"


class CombineOp(str, enum.Enum):
    sum = "sum"
    max = "max"
    product = "product"

    @property
    def token(self) -> str:
        return self.value.capitalize()


# ---------- Ranking / aggregation config ----------
class FullTextField(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)
    weight: float = 1.0


class RankExprNode(BaseModel):
    """Node of a custom ranking expression: an attribute, a constant, or an operator over operands."""

    model_config = ConfigDict(frozen=True)

    type: Literal["attribute", "constant", "operator"]
    attribute: Optional[str] = None
    constant: Optional[Any] = None
    operator: Optional[str] = None
    operands: List["RankExprNode"] = Field(default_factory=list)

    @model_validator(mode="after")
    def _well_formed(self) -> "RankExprNode":
        if self.type == "attribute" and not self.attribute:
            raise ValueError("attribute node requires 'attribute'")
        if self.type == "constant" and self.constant is None:
            raise ValueError("constant node requires 'constant'")
        if self.type == "operator" and (not self.operator or not self.operands):
            raise ValueError("operator node requires 'operator' and operands")
        return self


RankExprNode.model_rebuild()


class AggregationSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    function: str = "Count"
    attribute: Optional[str] = None


# ---------- Query config ----------
class QueryConfig(BaseModel):
    """Everything that shapes a query. Replaced wholesale on every change."""

    model_config = ConfigDict(frozen=True)

    predicates: List[Predicate] = Field(default_factory=list)
    search_text: str = ""
    query_mode: QueryMode = QueryMode.browse
    ranking_mode: RankingMode = RankingMode.simple
    sort_attribute: Optional[str] = None
    sort_direction: SortDirection = SortDirection.asc
    vector_query: Optional[List[float]] = None
    vector_field: Optional[str] = None
    fulltext_fields: List[FullTextField] = Field(default_factory=list)
    fulltext_operator: CombineOp = CombineOp.sum
    ranking_expression: Optional[RankExprNode] = None
    aggregations: List[AggregationSpec] = Field(default_factory=list)
    group_by: List[str] = Field(default_factory=list)

    @property
    def has_aggregations(self) -> bool:
        return len(self.aggregations) > 0

    @property
    def is_filtered(self) -> bool:
        return bool(self.predicates) or bool(self.search_text.strip())


# ---------- Pagination request ----------
class PaginationRequest(BaseModel):
    page: conint(ge=1) = 1
    page_size: conint(ge=1, le=10000) = 100
    cursor: Optional[RowKey] = None


# ---------- Backend query ----------
class BackendQuery(BaseModel):
    filters: Optional[Any] = None
    rank_by: Optional[Any] = None
    top_k: Optional[int] = None
    include_attributes: Optional[bool] = None
    aggregate_by: Optional[Dict[str, List[Any]]] = None
    group_by: Optional[List[str]] = None

    @model_validator(mode="after")
    def _aggregation_exclusive(self) -> "BackendQuery":
        if self.aggregate_by is not None and (
            self.rank_by is not None or self.include_attributes is not None
        ):
            raise ValueError("aggregate_by cannot be combined with rank_by or include_attributes")
        return self

    def to_request(self) -> Dict[str, Any]:
        """Wire payload; unset fields are absent, not null."""
        return self.model_dump(exclude_none=True)
