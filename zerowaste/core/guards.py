from zerowaste.core.errors import PermissionDeniedError
from zerowaste.models.schemas import Actor, Role


def ensure_owner(resource_user_id, actor: Actor, message: str = "Not authorized"):
    """Owner or admin only."""
    if actor.role != Role.ADMIN and resource_user_id != actor.user_id:
        raise PermissionDeniedError(message)


def ensure_role(actor: Actor, *roles: Role):
    if actor.role not in roles:
        raise PermissionDeniedError(f"Role {actor.role.value} is not allowed to do this")
