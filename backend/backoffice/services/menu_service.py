"""
Menu Service
Tree building and drag-and-drop reordering for storefront menus

The tree logic is kept in plain functions over lists of MenuItem so the
editor's drop semantics can be tested without a database.

Author: Backoffice API team
Date: 2026-02-10
"""
import logging
from typing import Dict, List, Optional, Set

from backoffice.core.auth import TenantContext
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.domain.menu import MenuItem, MenuItemCreate, PositionUpdate
from backoffice.repositories.menu_repository import MenuRepository

logger = logging.getLogger(__name__)


# ============================================================================
# Tree helpers
# ============================================================================

def build_hierarchy(items: List[MenuItem]) -> List[MenuItem]:
    """
    Nest a flat list of items.

    Items whose parent_id is not in the list are treated as roots. Every
    level is sorted by sort_order. Input items are not mutated.
    """
    by_id = {item.id: item.model_copy(update={'children': []}) for item in items}
    roots = []

    for item in by_id.values():
        parent = by_id.get(item.parent_id) if item.parent_id else None
        if parent is not None:
            parent.children.append(item)
        else:
            roots.append(item)

    def sort_level(level: List[MenuItem]) -> List[MenuItem]:
        level.sort(key=lambda i: i.sort_order)
        for node in level:
            sort_level(node.children)
        return level

    return sort_level(roots)


def _siblings(items: List[MenuItem], parent_id: Optional[str]) -> List[MenuItem]:
    return sorted((i for i in items if i.parent_id == parent_id), key=lambda i: i.sort_order)


def collect_descendants(items: List[MenuItem], item_id: str) -> Set[str]:
    """Ids of every item below item_id (not including it)"""
    children_of: Dict[Optional[str], List[str]] = {}
    for item in items:
        children_of.setdefault(item.parent_id, []).append(item.id)

    found: Set[str] = set()
    stack = list(children_of.get(item_id, []))
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        stack.extend(children_of.get(current, []))
    return found


def _renumber(level: List[MenuItem], parent_id: Optional[str]) -> List[PositionUpdate]:
    return [
        PositionUpdate(id=item.id, parent_id=parent_id, sort_order=index)
        for index, item in enumerate(level)
    ]


def plan_move(items: List[MenuItem], active_id: str, over_id: str, as_child: bool = False) -> List[PositionUpdate]:
    """
    Compute the position updates for dropping active_id over over_id.

    - as_child: active becomes the last child of over, existing children are
      renumbered 0..n-1.
    - same parent: array move from active's index to over's index, then the
      whole level is renumbered.
    - different parent: active is placed right after over in over's level;
      both the new and the old level are renumbered.

    Only items whose parent or position actually changes are returned.

    Raises:
        NotFoundError: unknown active or over id
        ValidationError: the move would put an item inside its own subtree
    """
    by_id = {item.id: item for item in items}
    active = by_id.get(active_id)
    over = by_id.get(over_id)
    if active is None or over is None:
        raise NotFoundError("Item de menu não encontrado")

    if active_id == over_id:
        return []

    new_parent_id = over.id if as_child else over.parent_id
    forbidden = collect_descendants(items, active.id) | {active.id}
    if new_parent_id in forbidden:
        raise ValidationError("Não é possível mover um item para dentro dele mesmo", code="menu_cycle")

    if as_child:
        children = [i for i in _siblings(items, over.id) if i.id != active.id]
        updates = _renumber(children + [active], over.id)

    elif active.parent_id == over.parent_id:
        level = _siblings(items, over.parent_id)
        old_index = next(i for i, item in enumerate(level) if item.id == active.id)
        new_index = next(i for i, item in enumerate(level) if item.id == over.id)
        level.insert(new_index, level.pop(old_index))
        updates = _renumber(level, over.parent_id)

    else:
        level = _siblings(items, over.parent_id)
        insert_at = next(i for i, item in enumerate(level) if item.id == over.id) + 1
        level.insert(insert_at, active)
        old_level = [i for i in _siblings(items, active.parent_id) if i.id != active.id]
        updates = _renumber(level, over.parent_id) + _renumber(old_level, active.parent_id)

    return [
        update for update in updates
        if (by_id[update.id].parent_id, by_id[update.id].sort_order) != (update.parent_id, update.sort_order)
    ]


# ============================================================================
# Service
# ============================================================================

class MenuService:
    """Reads and reorders menu items of a tenant"""

    def __init__(self, repo: MenuRepository = None):
        self.repo = repo or MenuRepository()

    def get_tree(self, ctx: TenantContext, menu_id: str) -> List[MenuItem]:
        return build_hierarchy(self.repo.find_items(ctx.tenant_id, menu_id))

    def add_item(self, ctx: TenantContext, menu_id: str, data: MenuItemCreate) -> MenuItem:
        items = self.repo.find_items(ctx.tenant_id, menu_id)

        if data.parent_id and not any(i.id == data.parent_id for i in items):
            raise NotFoundError("Item pai não encontrado")

        values = data.model_dump()
        values['sort_order'] = len(_siblings(items, data.parent_id))
        return self.repo.insert_item(ctx.tenant_id, menu_id, values)

    def move_item(self, ctx: TenantContext, menu_id: str, active_id: str, over_id: str,
                  as_child: bool = False) -> List[MenuItem]:
        items = self.repo.find_items(ctx.tenant_id, menu_id)
        updates = plan_move(items, active_id, over_id, as_child=as_child)

        self.repo.apply_positions(ctx.tenant_id, updates)
        logger.info(f"Menu {menu_id}: moved {active_id} over {over_id} (as_child={as_child}, {len(updates)} updates)")

        by_id = {u.id: u for u in updates}
        moved = [
            item.model_copy(update={'parent_id': by_id[item.id].parent_id, 'sort_order': by_id[item.id].sort_order})
            if item.id in by_id else item
            for item in items
        ]
        return build_hierarchy(moved)

    def delete_item(self, ctx: TenantContext, item_id: str) -> int:
        """Delete an item with all its subitems. Returns the number of rows deleted."""
        item = self.repo.find_item(ctx.tenant_id, item_id)
        if not item:
            raise NotFoundError("Item de menu não encontrado")

        items = self.repo.find_items(ctx.tenant_id, item.menu_id)
        to_delete = [item_id] + sorted(collect_descendants(items, item_id))

        remaining = [i for i in _siblings(items, item.parent_id) if i.id != item_id]
        renumber = [
            u for u in _renumber(remaining, item.parent_id)
            if next(i for i in remaining if i.id == u.id).sort_order != u.sort_order
        ]

        deleted = self.repo.delete_items(ctx.tenant_id, to_delete, renumber)
        logger.info(f"Menu item {item_id} deleted with {len(to_delete) - 1} subitems")
        return deleted
