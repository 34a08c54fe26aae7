from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking_backend.auth import jwt_handler
from booking_backend.core.actors import Actor, Role

security = HTTPBearer()


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token role") from exc

    return Actor(id=int(subject), role=role)


def require_roles(*roles: Role):
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="This action is not allowed for your role.")
        return actor

    return dependency
