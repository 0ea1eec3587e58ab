"""Policy key builders.

Compiled policies and runtime resolution meet on plain string keys:

- access policy key: ``{context}-{contextRole}-{subject}-{subjectRole|null}``
- action policy key: ``{subject}-{action}``
- controller action key: ``{controller}.{action}`` (``get_actor_policies`` output)
"""

from __future__ import annotations

from typing import Optional

NULL_ROLE = "null"


class PolicyKeys:
    """Builders for the string keys of the allowance index.

    Example::

        PolicyKeys.access("organization", "admin", "course", None)
        # "organization-admin-course-null"

        PolicyKeys.action("course", "read")        # "course-read"
        PolicyKeys.controller_action("item", "read")  # "item.read"
    """

    @staticmethod
    def access(
        context_name: str,
        context_role_name: Optional[str],
        subject_name: str,
        subject_role_name: Optional[str],
    ) -> str:
        return (
            f"{context_name}-{context_role_name or NULL_ROLE}-"
            f"{subject_name}-{subject_role_name or NULL_ROLE}"
        )

    @staticmethod
    def action(subject_name: str, action: str) -> str:
        return f"{subject_name}-{action}"

    @staticmethod
    def controller_action(controller_name: str, action: str) -> str:
        return f"{controller_name}.{action}"


__all__ = [
    "NULL_ROLE",
    "PolicyKeys",
]
