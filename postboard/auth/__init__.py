"""
Authorization - who may do what to which resource.

Design principles:
1. The permission matrix is data; predicates are behaviour; they meet in the engine
2. The actor is passed explicitly into every decision
3. Collection reads are filtered before the fetch, never after
4. Moderation is bounded reach, not blanket access

The FastAPI layer (policies, routes) is imported from its own modules.
"""

from postboard.auth.capabilities import (
    Action,
    ConfigurationError,
    Mode,
    PermissionMatrix,
    ResourceKind,
    get_permission_matrix,
)
from postboard.auth.context import Actor, resolve_actor
from postboard.auth.engine import (
    AuthorizationDenied,
    Decision,
    DecisionEngine,
    get_engine,
)
from postboard.auth.ownership import OwnershipResolver
from postboard.auth.predicates import (
    PredicateSet,
    conditional_predicates,
    moderation_predicates,
)
from postboard.auth.resources import ResourceView

__all__ = [
    # Matrix
    "Action",
    "ConfigurationError",
    "Mode",
    "PermissionMatrix",
    "ResourceKind",
    "get_permission_matrix",
    # Identity
    "Actor",
    "resolve_actor",
    # Engine
    "AuthorizationDenied",
    "Decision",
    "DecisionEngine",
    "get_engine",
    # Rules
    "OwnershipResolver",
    "PredicateSet",
    "conditional_predicates",
    "moderation_predicates",
    "ResourceView",
]
