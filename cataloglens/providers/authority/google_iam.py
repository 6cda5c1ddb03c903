from __future__ import annotations

from typing import Any

from cataloglens.core.errors import AuthorityAuthError, AuthorityError
from cataloglens.domain.refs import DatasetKey
from cataloglens.providers.authority.base import Binding
from cataloglens.providers.google.http import GoogleRestClient


_CRM_URL = "https://cloudresourcemanager.googleapis.com/v1/projects/{project}:getIamPolicy"
_DATASET_URL = "https://bigquery.googleapis.com/bigquery/v2/projects/{project}/datasets/{dataset}"

# BigQuery dataset ACLs still report primitive roles on older datasets.
_LEGACY_DATASET_ROLES = {
    "READER": "roles/bigquery.dataViewer",
    "WRITER": "roles/bigquery.dataEditor",
    "OWNER": "roles/bigquery.dataOwner",
}


def _access_entry_member(entry: dict[str, Any]) -> str | None:
    if entry.get("iamMember"):
        return str(entry["iamMember"])
    if entry.get("userByEmail"):
        email = str(entry["userByEmail"])
        prefix = "serviceAccount" if email.endswith(".gserviceaccount.com") else "user"
        return f"{prefix}:{email}"
    if entry.get("groupByEmail"):
        return f"group:{entry['groupByEmail']}"
    if entry.get("domain"):
        return f"domain:{entry['domain']}"
    if entry.get("specialGroup"):
        return str(entry["specialGroup"])
    # View/routine/dataset grants authorize resources, not principals.
    return None


def access_entries_to_bindings(entries: list[dict[str, Any]]) -> list[Binding]:
    """Fold BigQuery dataset access entries into IAM-style role bindings."""
    by_role: dict[str, list[str]] = {}
    for entry in entries:
        role = entry.get("role")
        member = _access_entry_member(entry)
        if not role or member is None:
            continue
        role = _LEGACY_DATASET_ROLES.get(str(role), str(role))
        by_role.setdefault(role, []).append(member)
    return [{"role": role, "members": members} for role, members in by_role.items()]


class GoogleIamAuthority:
    def __init__(self, rest: GoogleRestClient | None = None) -> None:
        self._rest = rest or GoogleRestClient(error_cls=AuthorityError, auth_error_cls=AuthorityAuthError)

    async def get_project_iam_policy(self, project_id: str) -> list[Binding]:
        payload = await self._rest.request("POST", _CRM_URL.format(project=project_id), json={})
        return list(payload.get("bindings") or [])

    async def get_resource_iam_policy(self, dataset_key: DatasetKey) -> list[Binding]:
        url = _DATASET_URL.format(project=dataset_key.project_id, dataset=dataset_key.dataset_id)
        payload = await self._rest.request("GET", url)
        return access_entries_to_bindings(list(payload.get("access") or []))

    async def aclose(self) -> None:
        await self._rest.aclose()
