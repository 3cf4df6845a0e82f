"""
Menu Domain Models

Navigation menus of the storefront (header, footer...). Items form a tree
through parent_id and are ordered by sort_order inside each level.

Author: Backoffice API team
Date: 2026-02-10
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class MenuItem(BaseModel):
    """
    Menu item domain model

    Fields:
        item_type: 'link', 'category', 'product', 'page'...
        ref_id: Referenced entity when item_type is not a raw link
        children: Filled only when the item is part of a built tree
    """

    id: str = Field(..., description="Menu item ID")
    menu_id: str = Field(..., description="Parent menu ID")
    tenant_id: Optional[str] = None
    parent_id: Optional[str] = Field(None, description="Parent item, None for top level")
    label: str = Field(..., description="Text shown in the menu")
    item_type: str = "link"
    url: Optional[str] = None
    ref_id: Optional[str] = None
    sort_order: int = Field(0, ge=0)
    created_at: Optional[datetime] = None
    children: List["MenuItem"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class MenuItemCreate(BaseModel):
    label: str = Field(..., min_length=1)
    item_type: str = "link"
    url: Optional[str] = None
    ref_id: Optional[str] = None
    parent_id: Optional[str] = None


class MenuItemMove(BaseModel):
    """Drop of active_id over over_id. as_child nests active under over."""
    active_id: str
    over_id: str
    as_child: bool = False


class PositionUpdate(BaseModel):
    id: str
    parent_id: Optional[str] = None
    sort_order: int
