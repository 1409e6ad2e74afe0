"""Settings exposed to the web UI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class UIFeatureFlags:
    enable_logout: bool = True
    enable_scheduling: bool = True
    enable_dataset_env_vars_management: bool = False
    enable_terms_of_service: bool = True

    def to_json(self) -> dict[str, Any]:
        return {
            "enableLogout": self.enable_logout,
            "enableScheduling": self.enable_scheduling,
            "enableDatasetEnvVarsManagement": self.enable_dataset_env_vars_management,
            "enableTermsOfService": self.enable_terms_of_service,
        }


@dataclass(frozen=True)
class UIConfiguration:
    ingest_upload_file_limit_mb: int = 50
    feature_flags: UIFeatureFlags = field(default_factory=UIFeatureFlags)

    def to_json(self) -> dict[str, Any]:
        return {
            "ingestUploadFileLimitMb": self.ingest_upload_file_limit_mb,
            "featureFlags": self.feature_flags.to_json(),
        }