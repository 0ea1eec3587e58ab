"""Access policy declaration and compilation.

Provides:
- PolicyCompiler: declarations → decision matrix + allowance index
- PolicyConfiguration: per-subject setter view for configure() callbacks
- CompiledPolicies: immutable compiled snapshot
- PolicyKeys: string keys shared by the compiler and the evaluator
"""

from .compiler import (
    ANY_ROLE,
    CompiledPolicies,
    ContextPolicySetters,
    PolicyCompiler,
    PolicyConfiguration,
    coerce_action_policies,
)
from .keys import NULL_ROLE, PolicyKeys

__all__ = [
    "ANY_ROLE",
    "NULL_ROLE",
    "CompiledPolicies",
    "ContextPolicySetters",
    "PolicyCompiler",
    "PolicyConfiguration",
    "PolicyKeys",
    "coerce_action_policies",
]
