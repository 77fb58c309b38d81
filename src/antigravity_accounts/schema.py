"""
Antigravity Account Storage Schemas

Wire shapes for every version of the stored accounts document. Attribute
names are snake_case; the camelCase keys written to disk are aliases.
"""

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import AllowInfNan, BaseModel, BeforeValidator, ConfigDict, Field, StrictFloat, StrictInt

from .constants import STORAGE_VERSION


SwitchReason = Literal["rate-limit", "initial", "rotation"]

# Finite JSON numbers in epoch milliseconds; bools and numeric strings are rejected
EpochMs = Union[StrictInt, Annotated[StrictFloat, AllowInfNan(False)]]


def _coerce_index(value: Any) -> Optional[int]:
    """Map anything that is not an integer to None so repair can reset it."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


ActiveIndex = Annotated[Optional[int], BeforeValidator(_coerce_index)]


class UnknownStorageVersionError(ValueError):
    """Raised when a document carries a version with no known schema."""

    def __init__(self, version: Any):
        super().__init__(f"Unknown storage version: {version!r}")
        self.version = version


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# =============================================================================
# Version 1
# =============================================================================

class AccountMetadataV1(_WireModel):
    """Account record with a single rate limit flag shared by all families."""
    email: Optional[str] = None
    refresh_token: str = Field(alias="refreshToken")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    managed_project_id: Optional[str] = Field(default=None, alias="managedProjectId")
    added_at: EpochMs = Field(alias="addedAt")
    last_used: EpochMs = Field(alias="lastUsed")
    is_rate_limited: Optional[bool] = Field(default=None, alias="isRateLimited")
    rate_limit_reset_time: Optional[EpochMs] = Field(default=None, alias="rateLimitResetTime")
    last_switch_reason: Optional[SwitchReason] = Field(default=None, alias="lastSwitchReason")


class AccountStorageV1(_WireModel):
    version: Literal[1] = 1
    accounts: List[AccountMetadataV1]
    active_index: ActiveIndex = Field(default=None, alias="activeIndex")


# =============================================================================
# Version 2
# =============================================================================

class RateLimitStateV2(_WireModel):
    """Reset times keyed by model family. A missing key means not limited."""
    claude: Optional[EpochMs] = None
    gemini: Optional[EpochMs] = None


class AccountMetadataV2(_WireModel):
    email: Optional[str] = None
    refresh_token: str = Field(alias="refreshToken")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    managed_project_id: Optional[str] = Field(default=None, alias="managedProjectId")
    added_at: EpochMs = Field(alias="addedAt")
    last_used: EpochMs = Field(alias="lastUsed")
    last_switch_reason: Optional[SwitchReason] = Field(default=None, alias="lastSwitchReason")
    rate_limit_reset_times: Optional[RateLimitStateV2] = Field(default=None, alias="rateLimitResetTimes")


class AccountStorageV2(_WireModel):
    version: Literal[2] = 2
    accounts: List[AccountMetadataV2]
    active_index: ActiveIndex = Field(default=None, alias="activeIndex")


# =============================================================================
# Version 3 (current)
# =============================================================================

class RateLimitStateV3(_WireModel):
    """
    Reset times keyed by quota.

    Gemini is split into two independent quotas. ``gemini-cli`` is part of
    the shape but no migration ever writes it.
    """
    claude: Optional[EpochMs] = None
    gemini_antigravity: Optional[EpochMs] = Field(default=None, alias="gemini-antigravity")
    gemini_cli: Optional[EpochMs] = Field(default=None, alias="gemini-cli")

    def limited_quotas(self, now: float) -> List[str]:
        """Wire keys of the quotas whose reset time is still ahead of ``now``."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        return [key for key, reset_at in data.items() if reset_at > now]


class AccountMetadataV3(_WireModel):
    email: Optional[str] = None
    refresh_token: str = Field(alias="refreshToken")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    managed_project_id: Optional[str] = Field(default=None, alias="managedProjectId")
    added_at: EpochMs = Field(alias="addedAt")
    last_used: EpochMs = Field(alias="lastUsed")
    last_switch_reason: Optional[SwitchReason] = Field(default=None, alias="lastSwitchReason")
    rate_limit_reset_times: Optional[RateLimitStateV3] = Field(default=None, alias="rateLimitResetTimes")


class ActiveIndexByFamily(_WireModel):
    """Active account index per model family."""
    claude: ActiveIndex = None
    gemini: ActiveIndex = None


class AccountStorageV3(_WireModel):
    version: Literal[3] = 3
    accounts: List[AccountMetadataV3] = Field(default_factory=list)
    active_index: ActiveIndex = Field(default=0, alias="activeIndex")
    active_index_by_family: Optional[ActiveIndexByFamily] = Field(default=None, alias="activeIndexByFamily")


AnyAccountStorage = Union[AccountStorageV1, AccountStorageV2, AccountStorageV3]

# Aliases for the current shapes
AccountMetadata = AccountMetadataV3
AccountStorage = AccountStorageV3
RateLimitState = RateLimitStateV3

STORAGE_SCHEMAS: Dict[int, Type[BaseModel]] = {
    1: AccountStorageV1,
    2: AccountStorageV2,
    3: AccountStorageV3,
}


def detect_version(data: Dict[str, Any]) -> Optional[int]:
    """
    Read the schema version tag of a raw document.

    Args:
        data: Parsed JSON object

    Returns:
        The version as an int, or None if it is missing or not recognized
    """
    version = data.get("version")
    if isinstance(version, bool):
        return None
    if isinstance(version, float) and version.is_integer():
        version = int(version)
    if not isinstance(version, int) or version not in STORAGE_SCHEMAS:
        return None
    return version


def decode_storage(data: Dict[str, Any]) -> AnyAccountStorage:
    """
    Validate a raw document against the schema named by its version.

    Args:
        data: Parsed JSON object

    Returns:
        The typed document for that version

    Raises:
        UnknownStorageVersionError: If the version is missing or unknown
        pydantic.ValidationError: If the document does not match its schema
    """
    version = detect_version(data)
    if version is None:
        raise UnknownStorageVersionError(data.get("version"))
    return STORAGE_SCHEMAS[version].model_validate({**data, "version": version})


def storage_to_dict(storage: AnyAccountStorage) -> Dict[str, Any]:
    """Wire-format dict with unset optional fields left out."""
    return storage.model_dump(mode="json", by_alias=True, exclude_none=True)


def dump_storage(storage: AnyAccountStorage) -> str:
    """Serialize a document as formatted JSON."""
    return json.dumps(storage_to_dict(storage), indent=2)


def is_current(storage: AnyAccountStorage) -> bool:
    return storage.version == STORAGE_VERSION
