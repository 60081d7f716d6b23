"""
业务错误 -> HTTP 异常
"""
from fastapi import HTTPException, status

from villa.services.errors import ConflictError, NotFoundError


def to_http_exception(error: ValueError) -> HTTPException:
    """NotFoundError -> 404, ConflictError -> 409（附带冲突的占用引用），其余 ValueError -> 400"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.to_dict())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
