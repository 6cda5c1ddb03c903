from __future__ import annotations

from cataloglens.core.config import get_settings
from cataloglens.providers.authority.base import IamAuthority
from cataloglens.providers.authority.fake import FakeIamAuthority
from cataloglens.providers.authority.google_iam import GoogleIamAuthority


def get_iam_authority() -> IamAuthority:
    settings = get_settings()
    provider = (settings.authority_provider or "google").lower()

    if provider == "fake":
        return FakeIamAuthority()
    return GoogleIamAuthority()
