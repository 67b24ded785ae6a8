"""Positional argument descriptors and whole-command schemas."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Tuple, Union

REQUIRED = "REQUIRED"
OPTIONAL = "OPTIONAL"

SchemaCheck = Callable[[Sequence[str]], Optional[str]]


class SchemaError(ValueError):
    """Raised when a schema is declared with an invalid descriptor order."""


class ArgKind(Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    CHOICE = "choice"


@dataclass(frozen=True)
class ArgDescriptor:
    kind: ArgKind
    name: str
    cardinality: str
    options: Tuple[str, ...] = ()

    @property
    def is_required(self) -> bool:
        return self.cardinality == REQUIRED

    def validate(self, arg: str) -> bool:
        if self.kind is ArgKind.CHOICE:
            return arg in self.options
        return True

    def describe(self) -> str:
        if self.kind is ArgKind.CHOICE:
            body = f'{self.name}: "{"|".join(self.options)}"'
        else:
            body = self.name
        if self.is_required:
            return f"<{body}>"
        return f"[{body}]"


def required(name: str) -> ArgDescriptor:
    return ArgDescriptor(ArgKind.REQUIRED, name, REQUIRED)


def optional(name: str) -> ArgDescriptor:
    return ArgDescriptor(ArgKind.OPTIONAL, name, OPTIONAL)


def choice(name: str, cardinality: str, options: Iterable[str]) -> ArgDescriptor:
    if cardinality not in (REQUIRED, OPTIONAL):
        raise SchemaError(f"Unknown cardinality {cardinality!r} for argument '{name}'.")
    return ArgDescriptor(ArgKind.CHOICE, name, cardinality, tuple(options))


# Validation outcomes. Exactly one is produced per validate() call.


@dataclass(frozen=True)
class Valid:
    pass


@dataclass(frozen=True)
class NotEnoughArgs:
    required_count: int


@dataclass(frozen=True)
class FailedArgValidation:
    descriptor: ArgDescriptor


@dataclass(frozen=True)
class OtherError:
    detail: str


ValidationOutcome = Union[Valid, NotEnoughArgs, FailedArgValidation, OtherError]


@dataclass(frozen=True)
class CommandSchema:
    """Ordered descriptors for one command.

    Once an optional descriptor appears no required descriptor may follow;
    this is checked on construction. Extra trailing arguments are ignored
    during validation.
    """

    descriptors: Tuple[ArgDescriptor, ...] = ()
    checks: Tuple[SchemaCheck, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "descriptors", tuple(self.descriptors))
        object.__setattr__(self, "checks", tuple(self.checks))
        optional_seen = False
        for desc in self.descriptors:
            if desc.is_required and optional_seen:
                raise SchemaError(
                    f"Required argument '{desc.name}' not allowed after optional argument."
                )
            if not desc.is_required:
                optional_seen = True

    @property
    def required_count(self) -> int:
        return sum(1 for desc in self.descriptors if desc.is_required)

    def __len__(self) -> int:
        return len(self.descriptors)

    def describe(self) -> str:
        return " ".join(desc.describe() for desc in self.descriptors)

    def validate(self, argv: Sequence[str]) -> ValidationOutcome:
        required_count = self.required_count
        if len(argv) < required_count:
            return NotEnoughArgs(required_count)

        checked = list(argv[: len(self.descriptors)])
        for desc, arg in zip(self.descriptors, checked):
            if not desc.validate(arg):
                return FailedArgValidation(desc)

        for check in self.checks:
            detail = check(checked)
            if detail:
                return OtherError(detail)
        return Valid()


def schema(*descriptors: ArgDescriptor, checks: Sequence[SchemaCheck] = ()) -> CommandSchema:
    return CommandSchema(tuple(descriptors), tuple(checks))
