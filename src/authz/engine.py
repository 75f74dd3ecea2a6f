from __future__ import annotations
from typing import Dict, Any, Tuple

# Static operator role policy
# action -> role(s) allowed to perform it
POLICY = {
    "visit.evaluate": ["OPERADOR", "SUPERVISOR", "ADMINISTRADOR"],
    "visit.read": ["OPERADOR", "SUPERVISOR", "ADMINISTRADOR"],
    "report.read": ["SUPERVISOR", "ADMINISTRADOR"],
    "restriction.manage": ["SUPERVISOR", "ADMINISTRADOR"],
    "authorization.suspend": ["SUPERVISOR", "ADMINISTRADOR"],
    "authorization.manage": ["ADMINISTRADOR"],
}


def can(actor_roles: list[str], action: str, resource: str | None = None, ctx: Dict[str, Any] | None = None) -> Tuple[bool, str]:
    required = POLICY.get(action)
    if not required:
        return False, f"default_deny: action {action} not in policy"
    roles = {r.upper() for r in actor_roles}
    if any(r in roles for r in required):
        return True, "allow"
    return False, f"missing_role: need one of {required}"
