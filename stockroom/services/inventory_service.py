from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from stockroom.authz.lazy import Interceptor
from stockroom.authz.requirements import requires_permission
from stockroom.domain.models import (
    InventoryCategory,
    InventoryCategoryCreate,
    InventoryCategoryUpdate,
    InventoryItem,
    InventoryItemCreate,
    InventoryItemUpdate,
    Tenant,
    now_utc,
)
from stockroom.domain.permissions import (
    PERM_INVENTORY_CREATE,
    PERM_INVENTORY_DELETE,
    PERM_INVENTORY_UPDATE,
    PERM_INVENTORY_VIEW,
)
from stockroom.infra.db import get_engine


class InventoryError(Exception):
    pass


class NotFoundError(InventoryError):
    pass


class ConflictError(InventoryError):
    pass


class InventoryService:
    def __init__(self, interceptor: Interceptor | None = None) -> None:
        self.authorization_interceptor = interceptor

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_category(self, session: Session, tenant_id: str, category_id: str) -> InventoryCategory:
        category = session.exec(
            select(InventoryCategory)
            .where(InventoryCategory.tenant_id == tenant_id)
            .where(InventoryCategory.id == category_id)
        ).first()
        if category is None:
            raise NotFoundError("inventory category not found")
        return category

    def _get_scoped_item(self, session: Session, tenant_id: str, item_id: str) -> InventoryItem:
        item = session.exec(
            select(InventoryItem).where(InventoryItem.tenant_id == tenant_id).where(InventoryItem.id == item_id)
        ).first()
        if item is None:
            raise NotFoundError("inventory item not found")
        return item

    @requires_permission(PERM_INVENTORY_CREATE)
    def create_category(self, tenant_id: str, payload: InventoryCategoryCreate) -> InventoryCategory:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            category = InventoryCategory(tenant_id=tenant_id, name=payload.name.strip())
            session.add(category)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("inventory category name already exists in tenant") from exc
            session.refresh(category)
            return category

    @requires_permission(PERM_INVENTORY_VIEW)
    def list_categories(self, tenant_id: str) -> list[InventoryCategory]:
        with self._session() as session:
            statement = (
                select(InventoryCategory)
                .where(InventoryCategory.tenant_id == tenant_id)
                .order_by(col(InventoryCategory.name))
            )
            return list(session.exec(statement).all())

    @requires_permission(PERM_INVENTORY_VIEW)
    def get_category(self, tenant_id: str, category_id: str) -> InventoryCategory:
        with self._session() as session:
            return self._get_scoped_category(session, tenant_id, category_id)

    @requires_permission(PERM_INVENTORY_UPDATE)
    def update_category(
        self,
        tenant_id: str,
        category_id: str,
        payload: InventoryCategoryUpdate,
    ) -> InventoryCategory:
        with self._session() as session:
            category = self._get_scoped_category(session, tenant_id, category_id)
            category.name = payload.name.strip()
            session.add(category)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("inventory category name already exists in tenant") from exc
            session.refresh(category)
            return category

    @requires_permission(PERM_INVENTORY_DELETE)
    def delete_category(self, tenant_id: str, category_id: str) -> None:
        with self._session() as session:
            category = self._get_scoped_category(session, tenant_id, category_id)
            in_use = session.exec(
                select(InventoryItem.id)
                .where(InventoryItem.tenant_id == tenant_id)
                .where(InventoryItem.category_id == category_id)
            ).first()
            if in_use is not None:
                raise ConflictError("inventory category still has items")
            session.delete(category)
            session.commit()

    @requires_permission(PERM_INVENTORY_CREATE)
    def create_item(self, tenant_id: str, payload: InventoryItemCreate) -> InventoryItem:
        with self._session() as session:
            self._get_scoped_category(session, tenant_id, payload.category_id)
            item = InventoryItem(
                tenant_id=tenant_id,
                category_id=payload.category_id,
                name=payload.name.strip(),
                purchase_price=payload.purchase_price,
                condition=payload.condition,
                purchase_date=payload.purchase_date,
                attributes=dict(payload.attributes),
            )
            session.add(item)
            session.commit()
            session.refresh(item)
            return item

    @requires_permission(PERM_INVENTORY_VIEW)
    def list_items(self, tenant_id: str, category_id: str | None = None) -> list[InventoryItem]:
        with self._session() as session:
            statement = select(InventoryItem).where(InventoryItem.tenant_id == tenant_id)
            if category_id is not None:
                statement = statement.where(InventoryItem.category_id == category_id)
            return list(session.exec(statement.order_by(col(InventoryItem.created_at))).all())

    @requires_permission(PERM_INVENTORY_VIEW)
    def get_item(self, tenant_id: str, item_id: str) -> InventoryItem:
        with self._session() as session:
            return self._get_scoped_item(session, tenant_id, item_id)

    @requires_permission(PERM_INVENTORY_UPDATE)
    def update_item(self, tenant_id: str, item_id: str, payload: InventoryItemUpdate) -> InventoryItem:
        with self._session() as session:
            item = self._get_scoped_item(session, tenant_id, item_id)
            if payload.category_id is not None:
                self._get_scoped_category(session, tenant_id, payload.category_id)
                item.category_id = payload.category_id
            if payload.name is not None:
                item.name = payload.name.strip()
            if payload.purchase_price is not None:
                item.purchase_price = payload.purchase_price
            if payload.condition is not None:
                item.condition = payload.condition
            if payload.purchase_date is not None:
                item.purchase_date = payload.purchase_date
            if payload.attributes is not None:
                item.attributes = dict(payload.attributes)
            item.updated_at = now_utc()
            session.add(item)
            session.commit()
            session.refresh(item)
            return item

    @requires_permission(PERM_INVENTORY_DELETE)
    def delete_item(self, tenant_id: str, item_id: str) -> None:
        with self._session() as session:
            item = self._get_scoped_item(session, tenant_id, item_id)
            session.delete(item)
            session.commit()

    @requires_permission(PERM_INVENTORY_VIEW, PERM_INVENTORY_DELETE, require_all=True)
    def purge_category(self, tenant_id: str, category_id: str) -> int:
        with self._session() as session:
            category = self._get_scoped_category(session, tenant_id, category_id)
            result = session.execute(
                sa.delete(InventoryItem)
                .where(col(InventoryItem.tenant_id) == tenant_id)
                .where(col(InventoryItem.category_id) == category_id)
            )
            session.delete(category)
            session.commit()
            return int(result.rowcount or 0)
