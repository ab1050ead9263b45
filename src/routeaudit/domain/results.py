from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class Err:
    reason: str
    ok: Literal[False] = False


# Verifier steps return one of the two arms; callers check `ok` (or isinstance)
Outcome = Union[Ok[T], Err]
