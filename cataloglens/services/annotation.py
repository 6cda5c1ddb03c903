from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from cataloglens.core.config import Settings, get_settings
from cataloglens.core.errors import CatalogUnavailableError
from cataloglens.domain.access import PermissionDecision, Tier
from cataloglens.domain.refs import (
    DatasetKey,
    item_fully_qualified_name,
    parse_dataset_key,
    parse_table_reference,
)
from cataloglens.services.admin_roles import AdminRoleResolver
from cataloglens.services.gateway import READER_OR_ABOVE_ROLES, AuthorityGateway


logger = logging.getLogger(__name__)

ACCESS_FIELD = "userHasAccess"


@dataclass
class AnnotationResult:
    items: list[dict[str, Any]]
    decisions: list[PermissionDecision]
    # Tier that settled the request; dataset when checks went item by item.
    tier: Tier

    @property
    def accessible(self) -> list[dict[str, Any]]:
        return [item for item in self.items if item.get(ACCESS_FIELD)]


@dataclass
class AccessibleTables:
    tables: list[dict[str, Any]] = field(default_factory=list)
    grouped_by_dataset: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


def _resource_key(item: Mapping[str, Any]) -> str | None:
    key = parse_dataset_key(item_fully_qualified_name(item))
    return key.canonical if key is not None else None


class AccessAnnotator:
    """Tag catalog results with ``userHasAccess`` for one principal.

    Tiers short-circuit: an admin or a project reader sees everything;
    otherwise each result is judged by its dataset's ACL, with one
    concurrent lookup per distinct dataset. Authority failures deny the
    affected items and never propagate.
    """

    def __init__(
        self,
        gateway: AuthorityGateway,
        admin_resolver: AdminRoleResolver,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._gateway = gateway
        self._admin_resolver = admin_resolver
        self._settings = settings or get_settings()

    def _grant_all(self, items: list[dict[str, Any]], principal: str, tier: Tier) -> AnnotationResult:
        tagged = [{**item, ACCESS_FIELD: True} for item in items]
        decisions = [
            PermissionDecision(principal=principal, resource_key=_resource_key(item), granted=True, tier=tier)
            for item in items
        ]
        return AnnotationResult(items=tagged, decisions=decisions, tier=tier)

    async def _is_elevated(self, principal: str) -> bool:
        try:
            return await self._admin_resolver.is_admin(principal)
        except Exception as exc:  # noqa: BLE001 - an unknown admin status is not elevated
            logger.warning("annotation_admin_tier_failed principal=%s", principal, exc_info=exc)
            return False

    async def annotate(self, results: Iterable[Mapping[str, Any]], principal: str) -> AnnotationResult:
        items = [dict(item) for item in results]
        if not items:
            return AnnotationResult(items=[], decisions=[], tier="dataset")

        if await self._is_elevated(principal):
            logger.debug("annotation_tier_admin principal=%s items=%d", principal, len(items))
            return self._grant_all(items, principal, "admin")

        project_id = self._settings.google_cloud_project_id
        if project_id and await self._gateway.check_project_membership(
            principal, project_id, READER_OR_ABOVE_ROLES
        ):
            logger.debug("annotation_tier_project principal=%s items=%d", principal, len(items))
            return self._grant_all(items, principal, "project")

        item_keys: list[DatasetKey | None] = [
            parse_dataset_key(item_fully_qualified_name(item)) for item in items
        ]
        unparseable = sum(1 for key in item_keys if key is None)
        if unparseable:
            logger.info("annotation_unparseable_items principal=%s count=%d", principal, unparseable)
        verdicts = await self._gateway.check_resource_memberships(
            principal, [key for key in item_keys if key is not None]
        )

        tagged: list[dict[str, Any]] = []
        decisions: list[PermissionDecision] = []
        for item, key in zip(items, item_keys):
            granted = verdicts.get(key, False) if key is not None else False
            tagged.append({**item, ACCESS_FIELD: granted})
            decisions.append(
                PermissionDecision(
                    principal=principal,
                    resource_key=key.canonical if key is not None else None,
                    granted=granted,
                    tier="dataset",
                )
            )
        logger.debug(
            "annotation_tier_dataset principal=%s items=%d datasets=%d granted=%d",
            principal,
            len(items),
            len(verdicts),
            sum(1 for decision in decisions if decision.granted),
        )
        return AnnotationResult(items=tagged, decisions=decisions, tier="dataset")

    async def filter_accessible(
        self, results: Iterable[Mapping[str, Any]], principal: str
    ) -> list[dict[str, Any]]:
        return (await self.annotate(results, principal)).accessible

    async def list_accessible_tables(self, principal: str) -> AccessibleTables:
        settings = self._settings
        entries: list[dict[str, Any]] = []
        page_token: str | None = None
        for _page in range(max(1, settings.accessible_tables_max_pages)):
            try:
                page = await self._gateway.search_entries(
                    settings.accessible_tables_query,
                    page_size=settings.search_max_page_size,
                    page_token=page_token,
                )
            except CatalogUnavailableError:
                # Keep what earlier pages returned; an outage only shortens the listing.
                logger.warning(
                    "accessible_tables_search_unavailable principal=%s collected=%d", principal, len(entries)
                )
                break
            entries.extend(page.results)
            page_token = page.next_page_token
            if not page_token:
                break

        annotated = await self.annotate(entries, principal)
        listing = AccessibleTables()
        seen: set[str] = set()
        for item in annotated.accessible:
            ref = parse_table_reference(item_fully_qualified_name(item))
            if ref is None or ref.canonical in seen:
                continue
            seen.add(ref.canonical)
            table = {
                "projectId": ref.project_id,
                "datasetId": ref.dataset_id,
                "tableId": ref.table_id,
                "fullyQualifiedName": f"bigquery:{ref.canonical}",
                "displayName": _display_name(item) or ref.table_id,
            }
            listing.tables.append(table)
            listing.grouped_by_dataset.setdefault(ref.dataset_key.canonical, []).append(table)

        listing.tables.sort(key=lambda table: table["fullyQualifiedName"])
        listing.grouped_by_dataset = {
            key: sorted(tables, key=lambda table: table["tableId"])
            for key, tables in sorted(listing.grouped_by_dataset.items())
        }
        return listing


def _display_name(item: Mapping[str, Any]) -> str | None:
    entry = item.get("dataplexEntry")
    source = entry.get("entrySource") if isinstance(entry, Mapping) else None
    if isinstance(source, Mapping) and source.get("displayName"):
        return str(source["displayName"])
    value = item.get("displayName")
    return str(value) if value else None
