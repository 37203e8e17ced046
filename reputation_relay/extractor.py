"""
Value extraction: turns a raw event's arguments into (user, value).

Token amounts arrive in the smallest denomination (18 decimals). Every
magnitude-based rule scales them to whole tokens, multiplies by
VALUE_MULTIPLIER and floors the result.
"""

import math
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Union

import structlog
from web3 import Web3

from .protocols import EventSpec

logger = structlog.get_logger()

VALUE_MULTIPLIER = Decimal(1000)
DEFAULT_VALUE = 1

ValueRule = Callable[[EventSpec, Mapping[str, Any]], int]

# (protocol_id, event_name or None for "any event") -> rule
_VALUE_RULES: dict[tuple[str, Optional[str]], ValueRule] = {}


class MissingUserFieldError(Exception):
    """The configured user field is absent from the event arguments."""

    def __init__(self, protocol_id: str, event_name: str, user_field: str):
        self.protocol_id = protocol_id
        self.event_name = event_name
        self.user_field = user_field
        super().__init__(
            f"User field '{user_field}' not found in {protocol_id}.{event_name}"
        )


def scaled(amount: Union[int, str, Decimal]) -> Decimal:
    """
    Convert a smallest-denomination amount to whole tokens.

    Examples:
        >>> scaled(2_500_000_000_000_000_000)
        Decimal('2.5')
    """
    return Web3.from_wei(int(amount), "ether")


def to_value(amount: Decimal) -> int:
    """Floor 1000 x amount, clamped at zero."""
    return max(math.floor(amount * VALUE_MULTIPLIER), 0)


def value_rule(protocol_id: str, event_name: Optional[str] = None) -> Callable[[ValueRule], ValueRule]:
    """Register a value rule for a protocol (optionally a single event)."""

    def decorator(func: ValueRule) -> ValueRule:
        _VALUE_RULES[(protocol_id, event_name)] = func
        return func

    return decorator


def _scaled_or_zero(args: Mapping[str, Any], name: str) -> Decimal:
    amount = args.get(name)
    return scaled(amount) if amount else Decimal(0)


@value_rule("dex", "Swap")
def _dex_swap(spec: EventSpec, args: Mapping[str, Any]) -> int:
    return to_value(max(_scaled_or_zero(args, "amount0Out"), _scaled_or_zero(args, "amount1Out")))


@value_rule("dex", "Mint")
def _dex_mint(spec: EventSpec, args: Mapping[str, Any]) -> int:
    return to_value(_scaled_or_zero(args, "amount0") + _scaled_or_zero(args, "amount1"))


@value_rule("dex")
def _dex_other(spec: EventSpec, args: Mapping[str, Any]) -> int:
    return DEFAULT_VALUE


@value_rule("lending")
def _lending(spec: EventSpec, args: Mapping[str, Any]) -> int:
    return to_value(_scaled_or_zero(args, spec.value_field or ""))


@value_rule("nft")
def _nft(spec: EventSpec, args: Mapping[str, Any]) -> int:
    price = args.get("price")
    if price:
        return to_value(scaled(price))
    return 1000


def _default_rule(spec: EventSpec, args: Mapping[str, Any]) -> int:
    amount = args.get(spec.value_field or "")
    if amount:
        return to_value(scaled(amount))
    return DEFAULT_VALUE


def resolve_rule(protocol_id: str, event_name: str) -> ValueRule:
    """Most specific rule wins: (protocol, event), then (protocol, any), then default."""
    return (
        _VALUE_RULES.get((protocol_id, event_name))
        or _VALUE_RULES.get((protocol_id, None))
        or _default_rule
    )


def extract(protocol_id: str, spec: EventSpec, args: Mapping[str, Any]) -> tuple[str, int]:
    """
    Extract the subject address and reputation value from event arguments.

    Raises:
        MissingUserFieldError: if the user field is absent.
    """
    user = args.get(spec.user_field)
    if not user:
        raise MissingUserFieldError(protocol_id, spec.event_name, spec.user_field)

    if spec.fixed_value is not None:
        return user, spec.fixed_value

    if not spec.value_field:
        return user, DEFAULT_VALUE

    rule = resolve_rule(protocol_id, spec.event_name)
    try:
        value = rule(spec, args)
    except (TypeError, ValueError, ArithmeticError) as e:
        # A qualifying action still counts when its magnitude is unreadable
        logger.warning(
            "value_extraction_failed",
            protocol=protocol_id,
            event_name=spec.event_name,
            error=str(e),
        )
        return user, DEFAULT_VALUE

    return user, value
