"""
构建组合引擎 - Build Composition Engine

负责校验输入、执行所有权/可见性规则、计算总价，并在单个事务中完成多行写入。
Validates inputs, applies ownership and visibility rules, derives the total
price and performs every multi-row mutation inside one store transaction.

所有结构性校验（名称长度、空组件列表、未知组件、分页参数）都在打开事务之前完成。
All structural validation (name length, empty selections, unknown components,
pagination bounds) happens before a transaction is opened.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .access import (
    ensure_owner,
    ensure_readable,
    page_meta,
    require_principal,
    validate_pagination,
    validate_sort,
)
from .catalog import ComponentCatalog
from .errors import ComponentsNotFound, Forbidden, InvalidArgument, NotFound
from .schemas import (
    BuildComponentInfo,
    BuildComponentView,
    BuildOwner,
    BuildPage,
    BuildPatch,
    BuildView,
    MAX_QUANTITY,
    Principal,
    Selection,
)
from .store import (
    SQLITE_MAX_INTEGER,
    BuildRow,
    BuildStoreTransaction,
    NewBuild,
    NewBuildComponent,
    SQLiteBuildStore,
)

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
COPY_DESCRIPTION_TEMPLATE = "Copy of build: {name}"


def _new_id() -> str:
    return str(uuid.uuid4())


def validate_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_NAME_LENGTH:
        raise InvalidArgument(
            f"build name must contain at least {MIN_NAME_LENGTH} characters",
            detail={"field": "name"},
        )
    return cleaned


def merge_selections(selections: Sequence[Selection]) -> List[NewBuildComponent]:
    """
    合并重复组件 - Merge duplicate component ids

    同一组件出现多次时数量相加，保留首次出现的类别与位置。
    Repeated component ids are summed into the first occurrence, which keeps
    its category and position.
    """
    merged: Dict[str, NewBuildComponent] = {}
    for sel in selections:
        existing = merged.get(sel.component_id)
        if existing is None:
            merged[sel.component_id] = NewBuildComponent(
                component_id=sel.component_id,
                category=sel.category,
                quantity=sel.quantity,
            )
        else:
            existing.quantity += sel.quantity
    return list(merged.values())


def compose_build(row: BuildRow) -> BuildView:
    return BuildView(
        id=row.id,
        name=row.name,
        description=row.description or None,
        total_price=row.total_price,
        is_public=row.is_public,
        created_at=row.created_at,
        updated_at=row.updated_at,
        owner=BuildOwner(id=row.owner_id, display_name=row.owner_display_name),
        components=[
            BuildComponentView(
                category=bc.category,
                component=BuildComponentInfo(
                    id=bc.component.id,
                    name=bc.component.name,
                    brand=bc.component.brand,
                    model=bc.component.model,
                    price=bc.component.price,
                    currency=bc.component.currency,
                    image=bc.component.images[0] if bc.component.images else None,
                    specs=bc.component.specs,
                ),
                quantity=bc.quantity,
            )
            for bc in row.components
        ],
    )


class BuildEngine:
    def __init__(
        self,
        store: SQLiteBuildStore,
        catalog: ComponentCatalog,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.store = store
        self.catalog = catalog
        self.id_factory = id_factory

    # ------------------------------------------------------------------ reads

    def list_owned(self, principal: Optional[Principal], page: int = 1, limit: int = 10) -> BuildPage:
        principal = require_principal(principal)
        offset = validate_pagination(page, limit)
        rows = self.store.list_owned(principal.id, offset, limit)
        total = self.store.count_owned(principal.id)
        return BuildPage(builds=[compose_build(r) for r in rows], **page_meta(total, page, limit))

    def list_public(
        self,
        page: int = 1,
        limit: int = 10,
        sort_field: str = "createdAt",
        sort_order: str = "desc",
    ) -> BuildPage:
        offset = validate_pagination(page, limit)
        validate_sort(sort_field, sort_order)
        rows = self.store.list_public(offset, limit, sort_field, sort_order)
        total = self.store.count_public()
        return BuildPage(builds=[compose_build(r) for r in rows], **page_meta(total, page, limit))

    def get_by_id(self, build_id: str, principal: Optional[Principal] = None) -> BuildView:
        row = self._require_build(build_id)
        ensure_readable(row, principal)
        return compose_build(row)

    # -------------------------------------------------------------- mutations

    def create(
        self,
        principal: Optional[Principal],
        name: str,
        selections: Sequence[Selection],
        *,
        description: Optional[str] = None,
        is_public: bool = False,
    ) -> BuildView:
        principal = require_principal(principal)
        return self._create(
            principal,
            validate_name(name),
            selections,
            description=description,
            is_public=is_public,
            action="create",
        )

    def update(self, build_id: str, principal: Optional[Principal], patch: BuildPatch) -> BuildView:
        principal = require_principal(principal)
        existing = self._require_build(build_id)
        ensure_owner(existing, principal, "edit")

        name = validate_name(patch.name) if patch.name is not None else None
        replacement: Optional[Tuple[List[NewBuildComponent], int]] = None
        if patch.selections is not None:
            replacement = self._price_selections(patch.selections)

        def _apply(tx: BuildStoreTransaction) -> BuildRow:
            updated = tx.update_fields(
                build_id,
                name=name,
                description=patch.description,
                set_description=patch.has("description"),
                is_public=patch.is_public,
                total_price=replacement[1] if replacement else None,
            )
            if not updated:
                raise NotFound("build not found")
            if replacement:
                tx.replace_components(build_id, replacement[0])
            tx.record_event(build_id, principal.id, "update")
            return tx.find_with_components(build_id)

        row = self.store.run_in_transaction(_apply)
        logger.info(
            "build updated id=%s owner=%s components_replaced=%s total_price=%s",
            build_id,
            principal.id,
            replacement is not None,
            row.total_price,
        )
        return compose_build(row)

    def delete(self, build_id: str, principal: Optional[Principal]) -> None:
        principal = require_principal(principal)
        existing = self._require_build(build_id)
        ensure_owner(existing, principal, "delete")

        def _apply(tx: BuildStoreTransaction) -> None:
            if not tx.delete_cascade(build_id):
                raise NotFound("build not found")
            tx.record_event(build_id, principal.id, "delete")

        self.store.run_in_transaction(_apply)
        logger.info("build deleted id=%s owner=%s", build_id, principal.id)

    def copy(self, build_id: str, principal: Optional[Principal], new_name: str) -> BuildView:
        principal = require_principal(principal)
        source = self._require_build(build_id)
        if not source.is_public:
            raise Forbidden("private", detail={"buildId": build_id})
        name = validate_name(new_name)
        selections = [
            Selection(category=bc.category, component_id=bc.component_id, quantity=bc.quantity)
            for bc in source.components
        ]
        return self._create(
            principal,
            name,
            selections,
            description=COPY_DESCRIPTION_TEMPLATE.format(name=source.name),
            is_public=False,
            action="copy",
        )

    def metrics(self) -> dict:
        stats = self.store.stats()
        stats["events_enabled"] = self.store.record_events
        return stats

    # ---------------------------------------------------------------- helpers

    def _require_build(self, build_id: str) -> BuildRow:
        row = self.store.find_with_components(build_id)
        if row is None:
            raise NotFound("build not found", detail={"buildId": build_id})
        return row

    def _price_selections(self, selections: Sequence[Selection]) -> Tuple[List[NewBuildComponent], int]:
        if not selections:
            raise InvalidArgument(
                "a build must contain at least one component",
                detail={"field": "selections"},
            )
        components = merge_selections(selections)
        oversized = [c.component_id for c in components if c.quantity > MAX_QUANTITY]
        if oversized:
            raise InvalidArgument(
                f"quantity per component must not exceed {MAX_QUANTITY}",
                detail={"field": "quantity", "componentIds": oversized},
            )
        resolved = self.catalog.resolve_many(c.component_id for c in components)
        missing = [c.component_id for c in components if c.component_id not in resolved]
        if missing:
            logger.warning("unresolved component ids: %s", ", ".join(missing))
            raise ComponentsNotFound(missing)
        total = sum(resolved[c.component_id].price * c.quantity for c in components)
        if total > SQLITE_MAX_INTEGER:
            raise InvalidArgument("build total price is out of range", detail={"field": "selections"})
        return components, total

    def _create(
        self,
        principal: Principal,
        name: str,
        selections: Sequence[Selection],
        *,
        description: Optional[str],
        is_public: bool,
        action: str,
    ) -> BuildView:
        components, total = self._price_selections(selections)
        build = NewBuild(
            id=self.id_factory(),
            name=name,
            description=description,
            total_price=total,
            is_public=is_public,
            owner_id=principal.id,
        )

        def _apply(tx: BuildStoreTransaction) -> BuildRow:
            if not tx.owner_exists(principal.id):
                raise NotFound(f"user {principal.id} not found")
            tx.insert(build, components)
            tx.record_event(build.id, principal.id, action)
            return tx.find_with_components(build.id)

        row = self.store.run_in_transaction(_apply)
        logger.info(
            "build %s id=%s owner=%s components=%d total_price=%d",
            "copied" if action == "copy" else "created",
            build.id,
            principal.id,
            len(components),
            total,
        )
        return compose_build(row)
