# FILE: exam_engine/routes/deps.py
"""
Caller identity resolved by the upstream auth gateway
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from exam_engine.models.orm import UserRole


class Caller(BaseModel):
    user_id: str
    role: UserRole


def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Caller:
    """The gateway authenticates and forwards X-User-Id / X-User-Role"""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        role = UserRole(x_user_role.strip().upper())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown role")
    return Caller(user_id=x_user_id, role=role)


def require_student(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.role != UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Student access only")
    return caller
