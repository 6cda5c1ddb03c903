from __future__ import annotations

from typing import Any, Protocol

from cataloglens.domain.refs import DatasetKey


# A binding is {"role": str, "members": list[str]}, as in Cloud IAM policies.
Binding = dict[str, Any]


class IamAuthority(Protocol):
    async def get_project_iam_policy(self, project_id: str) -> list[Binding]:
        ...

    async def get_resource_iam_policy(self, dataset_key: DatasetKey) -> list[Binding]:
        ...
