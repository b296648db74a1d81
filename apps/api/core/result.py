"""
Discriminated result type.

Used where an expected denial and an infrastructure fault must be told apart
by the caller without exception handling:

    result = verifier.validate(token)
    if result.ok:
        identity = result.value
    elif result.kind.is_infrastructure:
        ...
"""
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from core.exceptions import ErrorCode

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok = True


@dataclass(frozen=True)
class Err:
    kind: ErrorCode
    detail: str = ""
    ok = False

    @property
    def value(self) -> Any:
        raise ValueError(f"Err has no value ({self.kind.value}: {self.detail})")


Result = Union[Ok[T], Err]
