from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from stockroom.api.deps import claims_tenant_id, get_current_claims
from stockroom.domain.models import (
    InventoryCategoryCreate,
    InventoryCategoryRead,
    InventoryCategoryUpdate,
    InventoryItemCreate,
    InventoryItemRead,
    InventoryItemUpdate,
)
from stockroom.services.inventory_service import ConflictError, InventoryService, NotFoundError

router = APIRouter()


def get_inventory_service() -> InventoryService:
    return InventoryService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[InventoryService, Depends(get_inventory_service)]


def _handle_inventory_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post("/categories", response_model=InventoryCategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(payload: InventoryCategoryCreate, claims: Claims, service: Service) -> InventoryCategoryRead:
    try:
        category = service.create_category(claims_tenant_id(claims), payload)
        return InventoryCategoryRead.model_validate(category)
    except (NotFoundError, ConflictError) as exc:
        _handle_inventory_error(exc)
        raise


@router.get("/categories", response_model=list[InventoryCategoryRead])
def list_categories(claims: Claims, service: Service) -> list[InventoryCategoryRead]:
    categories = service.list_categories(claims_tenant_id(claims))
    return [InventoryCategoryRead.model_validate(item) for item in categories]


@router.get("/categories/{category_id}", response_model=InventoryCategoryRead)
def get_category(category_id: str, claims: Claims, service: Service) -> InventoryCategoryRead:
    try:
        return InventoryCategoryRead.model_validate(service.get_category(claims_tenant_id(claims), category_id))
    except NotFoundError as exc:
        _handle_inventory_error(exc)
        raise


@router.patch("/categories/{category_id}", response_model=InventoryCategoryRead)
def update_category(
    category_id: str,
    payload: InventoryCategoryUpdate,
    claims: Claims,
    service: Service,
) -> InventoryCategoryRead:
    try:
        category = service.update_category(claims_tenant_id(claims), category_id, payload)
        return InventoryCategoryRead.model_validate(category)
    except (NotFoundError, ConflictError) as exc:
        _handle_inventory_error(exc)
        raise


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_category(claims_tenant_id(claims), category_id)
    except (NotFoundError, ConflictError) as exc:
        _handle_inventory_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/categories/{category_id}/purge")
def purge_category(category_id: str, claims: Claims, service: Service) -> dict[str, int]:
    try:
        removed = service.purge_category(claims_tenant_id(claims), category_id)
    except NotFoundError as exc:
        _handle_inventory_error(exc)
        raise
    return {"removed_items": removed}


@router.post("/items", response_model=InventoryItemRead, status_code=status.HTTP_201_CREATED)
def create_item(payload: InventoryItemCreate, claims: Claims, service: Service) -> InventoryItemRead:
    try:
        return InventoryItemRead.model_validate(service.create_item(claims_tenant_id(claims), payload))
    except NotFoundError as exc:
        _handle_inventory_error(exc)
        raise


@router.get("/items", response_model=list[InventoryItemRead])
def list_items(
    claims: Claims,
    service: Service,
    category_id: Annotated[str | None, Query()] = None,
) -> list[InventoryItemRead]:
    items = service.list_items(claims_tenant_id(claims), category_id=category_id)
    return [InventoryItemRead.model_validate(item) for item in items]


@router.get("/items/{item_id}", response_model=InventoryItemRead)
def get_item(item_id: str, claims: Claims, service: Service) -> InventoryItemRead:
    try:
        return InventoryItemRead.model_validate(service.get_item(claims_tenant_id(claims), item_id))
    except NotFoundError as exc:
        _handle_inventory_error(exc)
        raise


@router.patch("/items/{item_id}", response_model=InventoryItemRead)
def update_item(item_id: str, payload: InventoryItemUpdate, claims: Claims, service: Service) -> InventoryItemRead:
    try:
        return InventoryItemRead.model_validate(service.update_item(claims_tenant_id(claims), item_id, payload))
    except NotFoundError as exc:
        _handle_inventory_error(exc)
        raise


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_item(claims_tenant_id(claims), item_id)
    except NotFoundError as exc:
        _handle_inventory_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
