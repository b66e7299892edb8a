from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ComponentCategory = Literal[
    "CPU",
    "GPU",
    "MOTHERBOARD",
    "RAM",
    "STORAGE",
    "PSU",
    "CASE",
    "COOLING",
    "PERIPHERALS",
]


MAX_QUANTITY = 10_000


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Component(ApiModel):
    id: str
    name: str
    brand: str
    model: str = ""
    category: ComponentCategory
    price: int = Field(ge=0, description="price in minor units")
    currency: str = "KZT"
    images: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)


class Principal(ApiModel):
    id: str
    role: str = "USER"


class Selection(ApiModel):
    category: ComponentCategory
    component_id: str
    quantity: int = Field(default=1, ge=1, le=MAX_QUANTITY)


class BuildCreate(ApiModel):
    name: str
    description: Optional[str] = None
    is_public: bool = False
    selections: List[Selection] = Field(default_factory=list)


class BuildPatch(ApiModel):
    """Partial update; only fields explicitly sent are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None
    selections: Optional[List[Selection]] = None

    def has(self, field: str) -> bool:
        return field in self.model_fields_set


class CopyRequest(ApiModel):
    name: str


class BuildOwner(ApiModel):
    id: str
    display_name: str


class BuildComponentInfo(ApiModel):
    id: str
    name: str
    brand: str
    model: str
    price: int
    currency: str
    image: Optional[str] = None
    specs: Dict[str, Any] = Field(default_factory=dict)


class BuildComponentView(ApiModel):
    category: ComponentCategory
    component: BuildComponentInfo
    quantity: int


class BuildView(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    total_price: int
    is_public: bool
    created_at: datetime
    updated_at: datetime
    owner: BuildOwner
    components: List[BuildComponentView] = Field(default_factory=list)


class BuildPage(ApiModel):
    builds: List[BuildView] = Field(default_factory=list)
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool
