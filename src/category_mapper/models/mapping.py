from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Confidence = Literal["high", "medium", "low"]
Provenance = Literal["oracle", "manual"]


class MappingRecord(BaseModel):
    """
    A memoized mapping. `key` is the caller's input string exactly as given:
    no trimming, no case folding.
    """
    key: str
    category_id: str = Field(..., description="Bare category id, e.g. el-1-2")
    category_gid: str = Field(..., description="Canonical id, e.g. gid://shopify/TaxonomyCategory/el-1-2")
    full_name: str
    confidence: Confidence
    provenance: Provenance
    created_at: datetime
    updated_at: datetime


class MappingStatistics(BaseModel):
    total: int = 0
    by_confidence: Dict[str, int] = Field(default_factory=dict)
    by_provenance: Dict[str, int] = Field(default_factory=dict)


class NavigationResult(BaseModel):
    category_id: str
    full_name: str
    confidence: Literal["high", "medium"]
    reasoning: str
    turns: int
    path: List[str] = Field(default_factory=list)


class MappingResult(BaseModel):
    category_id: str
    full_name: str
    confidence: Confidence
    cached: bool
    turns: Optional[int] = Field(None, description="Oracle turns used; None on a cache hit")
    reasoning: str = ""
