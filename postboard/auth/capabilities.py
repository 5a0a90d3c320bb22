"""
Roles, resource kinds, actions and the permission matrix.

This defines WHAT each role may do to each kind of resource, as a mode.
How a mode is turned into a decision lives in engine.py; the predicates
behind ``conditional`` and ``moderate`` live in predicates.py.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Mapping

from postboard.core.models import Role


class ConfigurationError(Exception):
    """The permission configuration is malformed. Fatal at startup."""
    pass


class ResourceKind(str, Enum):
    """Kinds of resource the matrix addresses."""

    POSTS = "posts"
    REPOSTS = "reposts"
    INTERACTIONS = "interactions"  # Generic like/comment
    LIKES = "likes"
    COMMENTS = "comments"
    USERS = "users"


class Action(str, Enum):
    """Operations on a resource."""

    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"
    DEACTIVATE = "Deactivate"
    PROMOTE = "Promote"  # Role changes (promote/demote)


class Mode(str, Enum):
    """
    How a (role, kind, action) triple is decided.

    NONE and ANY are final. OWN compares owners. PUBLISHED_ONLY looks at the
    post status. CONDITIONAL and MODERATE delegate to registered predicates.
    """

    NONE = "none"
    ANY = "any"
    OWN = "own"
    CONDITIONAL = "conditional"
    MODERATE = "moderate"
    PUBLISHED_ONLY = "published_only"


# Modes that need an identity to evaluate
IDENTITY_MODES = frozenset({Mode.OWN, Mode.CONDITIONAL, Mode.MODERATE})


# =============================================================================
# The table
# =============================================================================


# role -> kind -> action -> mode; anything not listed is "none"
ROLE_PERMISSIONS: dict[str, dict[str, dict[str, str]]] = {
    "superadmin": {
        # Authorship is never delegated: even a superadmin creates as itself
        "posts": {"Create": "own", "Read": "any", "Update": "any", "Delete": "any"},
        "reposts": {"Create": "published_only", "Read": "any", "Update": "any", "Delete": "any"},
        "interactions": {"Create": "published_only", "Read": "any", "Update": "own", "Delete": "any"},
        "likes": {"Create": "published_only", "Read": "any", "Delete": "any"},
        "comments": {"Create": "published_only", "Read": "any", "Update": "own", "Delete": "any"},
        "users": {
            "Create": "any", "Read": "any", "Update": "any", "Delete": "any",
            "Deactivate": "any", "Promote": "any",
        },
    },
    "admin": {
        "posts": {"Create": "own", "Read": "any", "Update": "moderate", "Delete": "moderate"},
        "reposts": {"Create": "published_only", "Read": "any", "Update": "own", "Delete": "moderate"},
        "interactions": {"Create": "published_only", "Read": "any", "Update": "own", "Delete": "own"},
        "likes": {"Create": "published_only", "Read": "any", "Delete": "moderate"},
        "comments": {"Create": "published_only", "Read": "any", "Update": "own", "Delete": "moderate"},
        "users": {"Read": "any", "Update": "moderate", "Delete": "moderate", "Deactivate": "moderate"},
    },
    "user": {
        "posts": {"Create": "own", "Read": "conditional", "Update": "own", "Delete": "own"},
        "reposts": {"Create": "conditional", "Read": "conditional", "Update": "own", "Delete": "own"},
        "interactions": {"Create": "conditional", "Read": "conditional", "Update": "own", "Delete": "own"},
        "likes": {"Create": "conditional", "Read": "conditional", "Delete": "own"},
        # Post authors may remove comments left on their posts
        "comments": {"Create": "conditional", "Read": "conditional", "Update": "own", "Delete": "moderate"},
        "users": {"Read": "own", "Update": "own", "Delete": "own", "Deactivate": "own"},
    },
    "unknown": {
        "posts": {"Read": "published_only"},
        "reposts": {"Read": "published_only"},
        "interactions": {"Read": "published_only"},
        "likes": {"Read": "published_only"},
        "comments": {"Read": "published_only"},
    },
}


# =============================================================================
# PermissionMatrix
# =============================================================================


MatrixKey = tuple[Role, ResourceKind, Action]


def _parse(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigurationError(f"Unknown {what} '{value}' in permission table") from None


class PermissionMatrix:
    """
    Static role × kind × action → mode table.

    Built once from a nested string table and validated on construction;
    read-only afterwards, so it is safe to share between concurrent requests.
    """

    def __init__(self, table: Mapping[str, Mapping[str, Mapping[str, str]]]):
        entries: dict[MatrixKey, Mode] = {}

        for role_name, kinds in table.items():
            role = _parse(Role, role_name, "role")
            for kind_name, actions in kinds.items():
                kind = _parse(ResourceKind, kind_name, "resource kind")
                for action_name, mode_name in actions.items():
                    action = _parse(Action, action_name, "action")
                    mode = _parse(Mode, mode_name, "mode")

                    if role == Role.UNKNOWN and mode in IDENTITY_MODES:
                        raise ConfigurationError(
                            f"Role 'unknown' cannot be granted '{mode.value}' "
                            f"on {kind.value}.{action.value}"
                        )
                    entries[(role, kind, action)] = mode

        self._entries = entries

    def lookup(self, role: Role, kind: ResourceKind, action: Action) -> Mode:
        """Mode for the triple; ``Mode.NONE`` when not granted."""
        return self._entries.get((role, kind, action), Mode.NONE)

    def entries(self, mode: Mode | None = None) -> list[tuple[MatrixKey, Mode]]:
        """All explicit entries, optionally only those with a given mode."""
        return [
            (key, m) for key, m in self._entries.items()
            if mode is None or m == mode
        ]

    def allowed_actions(self, role: Role, kind: ResourceKind) -> dict[Action, Mode]:
        """Everything a role may attempt on a kind (mode != none)."""
        return {
            action: mode
            for (r, k, action), mode in self._entries.items()
            if r == role and k == kind and mode != Mode.NONE
        }


@lru_cache
def get_permission_matrix() -> PermissionMatrix:
    """Get the process-wide permission matrix."""
    return PermissionMatrix(ROLE_PERMISSIONS)
