"""
Operation schemas and request parameter validation.

This module is the central registry of every operation the connector can
serve, mapping each operation name to the request parameters it requires:

    OPERATION_SCHEMAS = {
        "operationName": frozenset({"requiredParam", ...}),
    }

An operation missing from the table is unknown and always rejected, whatever
credential is presented. The HTTP layer builds its routes from this table and
the data accessor implements one handler per entry.

Validation only checks presence. Extra parameters are tolerated and passed
through untouched; value types are the accessor's concern.
"""

from collections.abc import Mapping
from typing import Any

from economy_connector.errors import MissingRequiredParameter, UnknownOperation

_PAGED = frozenset({"startPosition", "items"})
_GUILD_PAGED = _PAGED | {"guildId"}

OPERATION_SCHEMAS: dict[str, frozenset[str]] = {
    "getBotInfo": frozenset(),
    "getTables": frozenset(),
    "getFields": frozenset({"table"}),
    "getBalance": frozenset({"userId"}),
    "setBalance": frozenset({"userId", "balance"}),
    "createTransaction": frozenset({"userId", "amount", "reason"}),
    "getTransactions": frozenset({"userId"}) | _PAGED,
    "getGuildRank": frozenset({"userId", "guildId"}),
    "getGlobalRank": frozenset({"userId"}),
    "getGuildXp": frozenset({"userId", "guildId"}),
    "setGuildXp": frozenset({"userId", "guildId", "awardedXp"}),
    "getGlobalXp": frozenset({"userId"}),
    "getGuildXpLeaderboard": _GUILD_PAGED,
    "getGuildXpRoleRewards": _GUILD_PAGED,
    "getGuildXpCurrencyRewards": _GUILD_PAGED,
    "getGlobalXpLeaderboard": _PAGED,
}


def required_parameters(operation: str) -> frozenset[str]:
    """
    Look up the parameters an operation requires.

    Raises:
        UnknownOperation: If the operation has no schema
    """
    try:
        return OPERATION_SCHEMAS[operation]
    except KeyError:
        raise UnknownOperation(f"Unknown operation '{operation}'.") from None


def validate_request(operation: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
    """
    Check that every required parameter of `operation` is present in `params`.

    Returns:
        The same `params` object, unmodified

    Raises:
        UnknownOperation: If the operation has no schema
        MissingRequiredParameter: If any required parameter is absent
    """
    missing = required_parameters(operation) - params.keys()
    if missing:
        names = ", ".join(sorted(missing))
        raise MissingRequiredParameter(f"Invalid properties specified, missing: {names}.")
    return params
