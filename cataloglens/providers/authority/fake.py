from __future__ import annotations

from collections import Counter

from cataloglens.core.errors import AuthorityError
from cataloglens.domain.refs import DatasetKey
from cataloglens.providers.authority.base import Binding


class FakeIamAuthority:
    """In-memory IAM policies keyed by project id and "project.dataset"."""

    def __init__(
        self,
        project_policies: dict[str, list[Binding]] | None = None,
        dataset_policies: dict[str, list[Binding]] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.project_policies = project_policies or {}
        self.dataset_policies = dataset_policies or {}
        # Project ids or dataset keys whose lookups raise, to exercise fail-closed paths.
        self.failing = failing or set()
        self.calls: Counter[str] = Counter()

    async def get_project_iam_policy(self, project_id: str) -> list[Binding]:
        self.calls[f"project:{project_id}"] += 1
        if project_id in self.failing:
            raise AuthorityError(f"project {project_id} unavailable", status_code=503)
        return self.project_policies.get(project_id, [])

    async def get_resource_iam_policy(self, dataset_key: DatasetKey) -> list[Binding]:
        key = dataset_key.canonical
        self.calls[f"dataset:{key}"] += 1
        if key in self.failing:
            raise AuthorityError(f"dataset {key} unavailable", status_code=503)
        return self.dataset_policies.get(key, [])

    async def aclose(self) -> None:
        return None
