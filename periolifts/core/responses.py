from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

from periolifts.core.result import Err, Result

T = TypeVar("T")


class ResponseBase(BaseModel, Generic[T]):
    data: Optional[T] = None
    message: Optional[str] = None
    success: bool = True


class StandardResponse(ResponseBase[T]):
    pass


def unwrap_result(result: Result):
    """Return the value of ``result`` or raise its error for the exception handlers."""
    if isinstance(result, Err):
        raise result.error
    return result.value
