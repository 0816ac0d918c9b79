"""Unit tests for the error hierarchy the host maps onto responses."""

import pytest

from approved_secrets.errors import (
    BackendError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
    VaultAPIError,
)


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("error", "category", "status_code"),
        [
            (NotFoundError("role", "k8s-admin"), "not_found", 404),
            (PermissionDeniedError("not bound"), "permission_denied", 403),
            (ConflictError("exclusive lease active"), "conflict", 409),
            (ExpiredError("k8s-admin", "abcd"), "expired", 410),
            (ValidationError("must be positive", field="min_approvers"), "invalid", 400),
            (VaultAPIError("denied", upstream_status=403), "upstream", 502),
            (StorageError("unreachable"), "upstream", 500),
        ],
    )
    def test_category_and_status(self, error, category, status_code):
        assert isinstance(error, BackendError)
        assert error.category == category
        assert error.status_code == status_code

    def test_message_includes_user_action(self):
        error = ConflictError("exclusive lease active", user_action="Wait")

        assert error.message == "exclusive lease active"
        assert str(error) == "exclusive lease active\nAction required: Wait"

    def test_upstream_errors_name_the_service(self):
        error = VaultAPIError("denied", upstream_status=403, path="auth/token/create")

        assert error.service == "Vault"
        assert str(error).startswith(
            "Vault error: denied (path: auth/token/create) (status: 403)"
        )
