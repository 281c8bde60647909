from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_backend.auth import jwt_handler
from clinic_backend.core import config

CLINICIAN = "clinician"
PATIENT = "patient"
USER_TYPES = (CLINICIAN, PATIENT)

security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    user_type: str

    @property
    def is_clinician(self) -> bool:
        return self.user_type == CLINICIAN


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user_type = payload.get(config.JWT_USER_TYPE_CLAIM)
    if user_type not in USER_TYPES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized.")

    return CurrentUser(user_id=user_id, user_type=user_type)


def require_clinician(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_clinician:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only clinicians can perform this action.",
        )
    return current_user
