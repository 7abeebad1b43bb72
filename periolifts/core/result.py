from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from periolifts.core.exceptions import AppError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def map(self, transform: Callable[[T], U]) -> Ok[U]:
        return Ok(transform(self.value))

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AppError

    @property
    def is_ok(self) -> bool:
        return False

    def map(self, transform: Callable) -> Err:
        return self

    def unwrap(self):
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default


Result = Ok[T] | Err
