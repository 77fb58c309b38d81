"""
Test Storage Migrations

Covers the single-step upgrades and the chain that composes them.
"""

import pytest

from antigravity_accounts.migrations import (
    MIGRATIONS,
    migrate_to_current,
    migrate_v1_to_v2,
    migrate_v2_to_v3,
)
from antigravity_accounts.schema import (
    AccountStorageV1,
    AccountStorageV2,
    AccountStorageV3,
    UnknownStorageVersionError,
    storage_to_dict,
)


NOW = 1_700_000_000_000
FUTURE = NOW + 100_000
PAST = NOW - 100_000


def v1_storage(*accounts, active_index=0):
    return AccountStorageV1.model_validate({
        "version": 1,
        "accounts": list(accounts),
        "activeIndex": active_index,
    })


def v2_storage(*accounts, active_index=0):
    return AccountStorageV2.model_validate({
        "version": 2,
        "accounts": list(accounts),
        "activeIndex": active_index,
    })


def v2_account(rate_limits=None, **extra):
    account = {"refreshToken": "r1", "addedAt": NOW, "lastUsed": NOW, **extra}
    if rate_limits is not None:
        account["rateLimitResetTimes"] = rate_limits
    return account


class TestMigrateV1ToV2:
    """Test V1 to V2 migration."""

    def test_active_limit_applies_to_both_families(self):
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": FUTURE,
        })
        v2 = migrate_v1_to_v2(v1, now=NOW)

        assert v2.version == 2
        limits = v2.accounts[0].rate_limit_reset_times
        assert limits.claude == FUTURE
        assert limits.gemini == FUTURE

    def test_expired_limit_is_dropped(self):
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": PAST,
        })
        v2 = migrate_v1_to_v2(v1, now=NOW)
        assert v2.accounts[0].rate_limit_reset_times is None

    def test_reset_time_equal_to_now_is_dropped(self):
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": NOW,
        })
        assert migrate_v1_to_v2(v1, now=NOW).accounts[0].rate_limit_reset_times is None

    def test_flag_unset_ignores_reset_time(self):
        """A future reset time without the flag is not a rate limit."""
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": False,
            "rateLimitResetTime": FUTURE,
        })
        assert migrate_v1_to_v2(v1, now=NOW).accounts[0].rate_limit_reset_times is None

    def test_flag_without_reset_time(self):
        v1 = v1_storage({"refreshToken": "r1", "addedAt": NOW, "lastUsed": NOW, "isRateLimited": True})
        assert migrate_v1_to_v2(v1, now=NOW).accounts[0].rate_limit_reset_times is None

    def test_active_index_copied_verbatim(self):
        v1 = v1_storage(active_index=42)
        assert migrate_v1_to_v2(v1, now=NOW).active_index == 42


class TestMigrateV2ToV3:
    """Test V2 to V3 migration."""

    def test_gemini_becomes_gemini_antigravity(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account({"gemini": FUTURE})), now=NOW)

        assert v3.version == 3
        data = storage_to_dict(v3)["accounts"][0]
        assert data["rateLimitResetTimes"] == {"gemini-antigravity": FUTURE}
        assert v3.accounts[0].rate_limit_reset_times.gemini_cli is None

    def test_claude_preserved(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account({"claude": FUTURE})), now=NOW)
        assert storage_to_dict(v3)["accounts"][0]["rateLimitResetTimes"] == {"claude": FUTURE}

    def test_mixed_limits(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account({"claude": FUTURE, "gemini": FUTURE})), now=NOW)
        assert storage_to_dict(v3)["accounts"][0]["rateLimitResetTimes"] == {
            "claude": FUTURE,
            "gemini-antigravity": FUTURE,
        }

    def test_expired_limits_filtered(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account({"claude": PAST, "gemini": FUTURE})), now=NOW)
        limits = v3.accounts[0].rate_limit_reset_times
        assert limits.claude is None
        assert limits.gemini_antigravity == FUTURE

    @pytest.mark.parametrize("rate_limits", [
        {"claude": PAST, "gemini": PAST},
        {"claude": NOW, "gemini": NOW},
        {"gemini": PAST},
        {},
    ])
    def test_all_expired_removes_field(self, rate_limits):
        """The field is absent, never an empty mapping."""
        v3 = migrate_v2_to_v3(v2_storage(v2_account(rate_limits)), now=NOW)

        assert v3.accounts[0].rate_limit_reset_times is None
        assert "rateLimitResetTimes" not in storage_to_dict(v3)["accounts"][0]

    def test_no_rate_limits(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account()), now=NOW)
        assert "rateLimitResetTimes" not in storage_to_dict(v3)["accounts"][0]

    def test_identity_fields_pass_through(self):
        account = v2_account(
            {"claude": PAST},
            email="user@example.com",
            projectId="proj",
            managedProjectId="managed",
            lastSwitchReason="rate-limit",
        )
        v3 = migrate_v2_to_v3(v2_storage(account), now=NOW)

        data = storage_to_dict(v3)["accounts"][0]
        assert data == {
            "email": "user@example.com",
            "refreshToken": "r1",
            "projectId": "proj",
            "managedProjectId": "managed",
            "addedAt": NOW,
            "lastUsed": NOW,
            "lastSwitchReason": "rate-limit",
        }

    def test_absent_optional_fields_stay_absent(self):
        v3 = migrate_v2_to_v3(v2_storage(v2_account()), now=NOW)
        assert set(storage_to_dict(v3)["accounts"][0]) == {"refreshToken", "addedAt", "lastUsed"}

    def test_account_order_preserved(self):
        accounts = [v2_account(refreshToken=f"r{i}") for i in range(5)]
        v3 = migrate_v2_to_v3(v2_storage(*accounts), now=NOW)
        assert [acc.refresh_token for acc in v3.accounts] == [f"r{i}" for i in range(5)]

    def test_input_not_modified(self):
        v2 = v2_storage(v2_account({"claude": PAST, "gemini": FUTURE}), active_index=7)
        before = v2.model_dump()

        migrate_v2_to_v3(v2, now=NOW)

        assert v2.model_dump() == before
        assert v2.accounts[0].rate_limit_reset_times.claude == PAST


class TestMigrateToCurrent:
    """Test the migration chain."""

    def test_registry_is_keyed_by_source_version(self):
        assert MIGRATIONS == {1: migrate_v1_to_v2, 2: migrate_v2_to_v3}

    def test_v1_reaches_v3(self):
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": FUTURE,
        })
        v3 = migrate_to_current(v1, now=NOW)

        assert isinstance(v3, AccountStorageV3)
        assert storage_to_dict(v3)["accounts"][0]["rateLimitResetTimes"] == {
            "claude": FUTURE,
            "gemini-antigravity": FUTURE,
        }
        assert v3.accounts[0].rate_limit_reset_times.gemini_cli is None

    def test_v1_chain_matches_step_by_step(self):
        v1 = v1_storage({
            "email": "user@example.com",
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": FUTURE,
        })
        chained = migrate_to_current(v1, now=NOW)
        stepwise = migrate_v2_to_v3(migrate_v1_to_v2(v1, now=NOW), now=NOW)
        assert chained == stepwise

    def test_v2_reaches_v3(self):
        v3 = migrate_to_current(v2_storage(v2_account({"gemini": FUTURE})), now=NOW)
        assert v3.version == 3

    def test_current_version_returned_unchanged(self):
        v3 = AccountStorageV3()
        assert migrate_to_current(v3, now=NOW) is v3

    def test_input_not_modified(self):
        v1 = v1_storage({
            "refreshToken": "r1",
            "addedAt": NOW,
            "lastUsed": NOW,
            "isRateLimited": True,
            "rateLimitResetTime": PAST,
        })
        before = v1.model_dump()
        migrate_to_current(v1, now=NOW)
        assert v1.model_dump() == before

    def test_defaults_to_wall_clock(self):
        """Without an explicit time, a far-past limit is dropped."""
        v2 = v2_storage(v2_account({"claude": 1, "gemini": 2**62}))
        limits = migrate_to_current(v2).accounts[0].rate_limit_reset_times
        assert limits.claude is None
        assert limits.gemini_antigravity == 2**62

    def test_unregistered_version_raises(self, monkeypatch):
        monkeypatch.delitem(MIGRATIONS, 1)
        with pytest.raises(UnknownStorageVersionError):
            migrate_to_current(v1_storage(), now=NOW)
