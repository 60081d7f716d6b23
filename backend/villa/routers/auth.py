"""
认证路由
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from villa.database import get_db
from villa.models.ontology import Employee
from villa.models.schemas import EmployeeResponse, LoginRequest, Token
from villa.security.auth import authenticate, create_access_token, get_current_user
from villa.security.permissions import effective_permissions

router = APIRouter(prefix="/auth", tags=["认证"])


@router.post("/login", response_model=Token)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    """员工登录"""
    employee = authenticate(db, data.username, data.password)
    if not employee:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户名或密码错误"
        )
    if not employee.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="账号已停用")

    return Token(
        access_token=create_access_token(employee.id, employee.role),
        employee=EmployeeResponse.model_validate(employee),
        permissions=sorted(effective_permissions(employee)),
    )


@router.get("/me")
def get_current_user_info(current_user: Employee = Depends(get_current_user)):
    """获取当前用户信息"""
    return {
        'id': current_user.id,
        'username': current_user.username,
        'name': current_user.name,
        'role': current_user.role,
        'permissions': sorted(effective_permissions(current_user)),
    }
