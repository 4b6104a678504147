"""Immutable description of a ledger Move call and its arguments."""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

from common.constants import CLOCK_OBJECT_ID


@dataclass(frozen=True)
class ObjectArg:
    """Reference to an on-ledger object by id."""
    object_id: str

    def to_json(self) -> Any:
        return self.object_id


@dataclass(frozen=True)
class PureArg:
    """
    Plain value with its Move type.

    Supported types: bool, u8, u64, address, string, vector<u8>,
    vector<vector<u8>>, vector<address>, option<T> for any of those.
    """
    move_type: str
    value: Any

    def to_json(self) -> Any:
        return _encode_pure(self.move_type, self.value)


Argument = Union[ObjectArg, PureArg]


def _encode_pure(move_type: str, value: Any) -> Any:
    if move_type.startswith('option<'):
        inner = move_type[len('option<'):-1]
        return [] if value is None else [_encode_pure(inner, value)]
    if move_type == 'vector<u8>':
        if isinstance(value, str):
            value = value.encode('utf-8')
        return list(bytes(value))
    if move_type.startswith('vector<'):
        inner = move_type[len('vector<'):-1]
        return [_encode_pure(inner, item) for item in value]
    if move_type == 'u64':
        return str(int(value))
    if move_type == 'u8':
        return int(value)
    if move_type == 'bool':
        return bool(value)
    return value


@dataclass(frozen=True)
class MoveCall:
    """
    One Move entry-point call.

    Attributes:
        target: Fully qualified function, '<package>::<module>::<function>'
        arguments: Positional arguments in call order
        type_arguments: Generic type arguments
    """
    target: str
    arguments: Tuple[Argument, ...] = ()
    type_arguments: Tuple[str, ...] = ()

    @property
    def package(self) -> str:
        return self.target.split('::')[0]

    @property
    def module(self) -> str:
        return self.target.split('::')[1]

    @property
    def function(self) -> str:
        return self.target.split('::')[2]

    @property
    def object_ids(self) -> Tuple[str, ...]:
        return tuple(arg.object_id for arg in self.arguments if isinstance(arg, ObjectArg))

    def references(self, object_id: str) -> bool:
        return object_id in self.object_ids

    def json_arguments(self) -> list:
        return [arg.to_json() for arg in self.arguments]


# Argument constructors

def obj(object_id: str) -> ObjectArg:
    return ObjectArg(object_id)


def clock() -> ObjectArg:
    return ObjectArg(CLOCK_OBJECT_ID)


def pure_bytes(value: Union[str, bytes]) -> PureArg:
    return PureArg('vector<u8>', value)


def pure_u64(value: int) -> PureArg:
    return PureArg('u64', int(value))


def pure_u8(value: int) -> PureArg:
    return PureArg('u8', int(value))


def pure_bool(value: bool) -> PureArg:
    return PureArg('bool', bool(value))


def pure_address(value: str) -> PureArg:
    return PureArg('address', value)


def pure_addresses(values: Sequence[str]) -> PureArg:
    return PureArg('vector<address>', list(values))


def pure_byte_vectors(values: Sequence[Union[str, bytes]]) -> PureArg:
    return PureArg('vector<vector<u8>>', list(values))


def pure_option(inner_type: str, value: Optional[Any]) -> PureArg:
    return PureArg(f'option<{inner_type}>', value)
