"""
Tests for the permission matrix.

The table is data: total over the closed enums, validated once, and
never able to hand an anonymous caller a mode that needs an identity.
"""

import itertools

import pytest

from postboard.auth.capabilities import (
    ROLE_PERMISSIONS,
    Action,
    ConfigurationError,
    Mode,
    PermissionMatrix,
    ResourceKind,
    get_permission_matrix,
)
from postboard.core.models import Role


@pytest.fixture
def matrix():
    return get_permission_matrix()


# =============================================================================
# Totality
# =============================================================================


class TestLookup:
    def test_total_and_deterministic(self, matrix):
        for role, kind, action in itertools.product(Role, ResourceKind, Action):
            first = matrix.lookup(role, kind, action)
            assert isinstance(first, Mode)
            assert matrix.lookup(role, kind, action) == first

    def test_unset_combinations_are_none(self, matrix):
        assert matrix.lookup(Role.USER, ResourceKind.USERS, Action.PROMOTE) == Mode.NONE
        assert matrix.lookup(Role.UNKNOWN, ResourceKind.POSTS, Action.CREATE) == Mode.NONE
        assert matrix.lookup(Role.ADMIN, ResourceKind.LIKES, Action.UPDATE) == Mode.NONE

    def test_unknown_role_only_gets_identity_free_modes(self, matrix):
        allowed = {Mode.ANY, Mode.NONE, Mode.PUBLISHED_ONLY}
        for kind, action in itertools.product(ResourceKind, Action):
            assert matrix.lookup(Role.UNKNOWN, kind, action) in allowed

    def test_matrix_is_shared(self):
        assert get_permission_matrix() is get_permission_matrix()


# =============================================================================
# Canonical entries
# =============================================================================


class TestCanonicalTable:
    @pytest.mark.parametrize("role,kind,action,mode", [
        (Role.UNKNOWN, ResourceKind.POSTS, Action.READ, Mode.PUBLISHED_ONLY),
        (Role.USER, ResourceKind.POSTS, Action.READ, Mode.CONDITIONAL),
        (Role.USER, ResourceKind.REPOSTS, Action.CREATE, Mode.CONDITIONAL),
        (Role.USER, ResourceKind.COMMENTS, Action.DELETE, Mode.MODERATE),
        (Role.ADMIN, ResourceKind.POSTS, Action.UPDATE, Mode.MODERATE),
        (Role.ADMIN, ResourceKind.POSTS, Action.DELETE, Mode.MODERATE),
        (Role.ADMIN, ResourceKind.USERS, Action.DELETE, Mode.MODERATE),
        (Role.ADMIN, ResourceKind.LIKES, Action.DELETE, Mode.MODERATE),
        (Role.ADMIN, ResourceKind.POSTS, Action.CREATE, Mode.OWN),
        (Role.SUPERADMIN, ResourceKind.POSTS, Action.CREATE, Mode.OWN),
        (Role.SUPERADMIN, ResourceKind.POSTS, Action.DELETE, Mode.ANY),
        (Role.SUPERADMIN, ResourceKind.USERS, Action.PROMOTE, Mode.ANY),
    ])
    def test_entry(self, matrix, role, kind, action, mode):
        assert matrix.lookup(role, kind, action) == mode

    def test_admin_moderation_is_never_blanket_on_users(self, matrix):
        for action in (Action.UPDATE, Action.DELETE, Action.DEACTIVATE):
            assert matrix.lookup(Role.ADMIN, ResourceKind.USERS, action) == Mode.MODERATE
        assert matrix.lookup(Role.ADMIN, ResourceKind.USERS, Action.PROMOTE) == Mode.NONE

    def test_allowed_actions(self, matrix):
        actions = matrix.allowed_actions(Role.UNKNOWN, ResourceKind.POSTS)
        assert actions == {Action.READ: Mode.PUBLISHED_ONLY}


# =============================================================================
# Fail-fast validation
# =============================================================================


class TestValidation:
    def test_unknown_resource_kind(self):
        with pytest.raises(ConfigurationError, match="resource kind"):
            PermissionMatrix({"user": {"polls": {"Read": "any"}}})

    def test_unknown_action(self):
        with pytest.raises(ConfigurationError, match="action"):
            PermissionMatrix({"user": {"posts": {"Share": "any"}}})

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError, match="mode"):
            PermissionMatrix({"user": {"posts": {"Read": "sometimes"}}})

    def test_unknown_role(self):
        with pytest.raises(ConfigurationError, match="role"):
            PermissionMatrix({"guest": {"posts": {"Read": "any"}}})

    @pytest.mark.parametrize("mode", ["own", "conditional", "moderate"])
    def test_identity_mode_for_unknown_rejected(self, mode):
        with pytest.raises(ConfigurationError):
            PermissionMatrix({"unknown": {"posts": {"Read": mode}}})

    def test_shipped_table_is_valid(self):
        assert PermissionMatrix(ROLE_PERMISSIONS).entries()
