"""
Menus API Endpoints
Storefront menu items as a tree, with drag-and-drop reordering

Author: Backoffice API team
Date: 2026-02-10
"""
from fastapi import APIRouter, Depends, HTTPException

from backoffice.core.auth import TenantContext, get_tenant_context
from backoffice.core.errors import BackofficeError
from backoffice.domain.menu import MenuItemCreate, MenuItemMove
from backoffice.services.menu_service import MenuService

router = APIRouter()


def get_menu_service() -> MenuService:
    return MenuService()


@router.get("/{menu_id}/items")
async def get_menu_tree(
    menu_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: MenuService = Depends(get_menu_service)
):
    """Top level items ordered by sort_order, each with its children"""
    try:
        tree = service.get_tree(ctx, menu_id)
        return {"status": "success", "data": [item.to_dict() for item in tree]}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching menu: {str(e)}")


@router.post("/{menu_id}/items", status_code=201)
async def add_menu_item(
    menu_id: str,
    request: MenuItemCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: MenuService = Depends(get_menu_service)
):
    try:
        item = service.add_item(ctx, menu_id, request)
        return {"status": "success", "data": item.to_dict()}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adding menu item: {str(e)}")


@router.post("/{menu_id}/items/move")
async def move_menu_item(
    menu_id: str,
    request: MenuItemMove,
    ctx: TenantContext = Depends(get_tenant_context),
    service: MenuService = Depends(get_menu_service)
):
    """
    Drop active_id over over_id

    With as_child the item becomes the last child of over_id, otherwise it
    takes over_id's place among its siblings. Returns the updated tree.
    """
    try:
        tree = service.move_item(ctx, menu_id, request.active_id, request.over_id, as_child=request.as_child)
        return {"status": "success", "data": [item.to_dict() for item in tree]}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error moving menu item: {str(e)}")


@router.delete("/items/{item_id}")
async def delete_menu_item(
    item_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: MenuService = Depends(get_menu_service)
):
    try:
        deleted = service.delete_item(ctx, item_id)
        return {"status": "success", "deleted": deleted}

    except BackofficeError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting menu item: {str(e)}")
