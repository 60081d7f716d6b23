"""
认证与授权模块
JWT 令牌 + 权限码检查，每个请求在进入业务服务前完成一次授权
"""
import bcrypt
import logging
from datetime import datetime, timedelta, UTC
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from villa.config import settings
from villa.database import get_db
from villa.models.ontology import Employee, EmployeeRole
from villa.security.permissions import effective_permissions

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    """密码哈希"""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """验证密码"""
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


def create_access_token(employee_id: int, role: EmployeeRole,
                        expires_minutes: Optional[int] = None) -> str:
    """创建 JWT token"""
    minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(UTC) + timedelta(minutes=minutes)
    to_encode = {
        "sub": str(employee_id),
        "role": role.value if isinstance(role, EmployeeRole) else str(role),
        "exp": expire
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


def authenticate(db: Session, username: str, password: str) -> Optional[Employee]:
    """校验用户名密码，失败返回 None"""
    employee = db.query(Employee).filter(Employee.username == username).first()
    if not employee or not verify_password(password, employee.password_hash):
        return None
    return employee


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Employee:
    """获取当前登录用户"""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="未提供认证凭证"
        )
    payload = decode_token(credentials.credentials)

    try:
        employee_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )
    employee = db.query(Employee).filter(Employee.id == employee_id).first()

    if not employee:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在"
        )

    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="账号已停用"
        )

    return employee


def require_permission(*permission_codes: str):
    """权限检查依赖，多个权限码为 OR 逻辑"""
    async def permission_checker(current_user: Employee = Depends(get_current_user)):
        granted = effective_permissions(current_user)
        if any(code in granted for code in permission_codes):
            return current_user

        logger.info(f"Employee {current_user.id} denied, needs any of {permission_codes}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"缺少权限: {', '.join(permission_codes)}"
        )
    return permission_checker


def require_all_permissions(*permission_codes: str):
    """权限检查依赖，多个权限码为 AND 逻辑（如创建住宿需同时具备客户与预订创建权限）"""
    async def permission_checker(current_user: Employee = Depends(get_current_user)):
        granted = effective_permissions(current_user)
        missing = [code for code in permission_codes if code not in granted]
        if not missing:
            return current_user

        logger.info(f"Employee {current_user.id} denied, missing {missing}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"缺少权限: {', '.join(missing)}"
        )
    return permission_checker
