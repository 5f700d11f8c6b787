from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class TaxonomyAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class Category(BaseModel):
    """
    One node of the product taxonomy, as shipped in the snapshot.
    `children` order is authoritative; `ancestors` runs root -> parent.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Canonical id, e.g. gid://shopify/TaxonomyCategory/el-1")
    level: int = Field(..., description="Depth in the tree, 0 for vertical roots")
    name: str
    full_name: str = Field(..., description="Path name, e.g. Electronics > Computers")
    parent_id: Optional[str] = None
    attributes: List[TaxonomyAttribute] = Field(default_factory=list)
    children: List[CategoryRef] = Field(default_factory=list)
    ancestors: List[CategoryRef] = Field(default_factory=list)


class VerticalSnapshot(BaseModel):
    name: str
    prefix: str
    categories: List[Category] = Field(default_factory=list)


class TaxonomySnapshot(BaseModel):
    """Pre-parsed taxonomy file: a version tag plus ordered verticals."""
    version: str = "unknown"
    verticals: List[VerticalSnapshot] = Field(default_factory=list)


class Vertical(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    prefix: str
    root_category: Optional[Category] = None


class SearchResult(BaseModel):
    category: Category
    score: int
    match_type: Literal["exact", "partial"]


class CategoryMetadata(BaseModel):
    id: str
    name: str
    full_name: str
    level: int
    is_leaf: bool
    children_count: int
    parent_id: Optional[str] = None
