"""Step sequences as returned by the indexer's /execute endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

StepKind = Literal["transaction", "signature"]
ItemStatus = Literal["incomplete", "complete"]


class StepItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: ItemStatus = "incomplete"
    data: Optional[Dict[str, Any]] = None
    order_indexes: Optional[List[int]] = Field(default=None, alias="orderIndexes")


class Step(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    kind: StepKind
    action: str = ""
    description: str = ""
    items: List[StepItem] = Field(default_factory=list)


class StepSequence(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: List[Step] = Field(default_factory=list)
    errors: Optional[List[Dict[str, Any]]] = None
    path: Optional[List[Dict[str, Any]]] = None
