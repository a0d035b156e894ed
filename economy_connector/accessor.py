"""
Data access over the bot's SQLite database.

DataAccessor exposes one async handler per operation in the schema registry.
Handlers are registered once, in the constructor, together with the pydantic
model their parameters are parsed into:

    "getBalance" -> (UserParams, get_balance)

call() is the single entry point used by the dispatcher. It refuses to run
before initialize(), rejects operations disabled in configuration, parses the
raw request parameters (query strings arrive as text) into the typed model
and awaits the handler. Every failure is a DataAccessError subclass whose
message is safe to show to the client.

All statements use bound parameters. The only identifier interpolated into
SQL is the table name in getFields, and only after it has been matched
against the database's own table list.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
)
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from economy_connector.errors import (
    AccessorNotInitialized,
    ConfigurationError,
    DataAccessError,
    InvalidParameter,
    NotFound,
    OperationDisabled,
    UnknownOperation,
)
from economy_connector.levels import calc_level

logger = logging.getLogger(__name__)

SQLITE_INTEGER_MAX = 2**63 - 1
SQLITE_INTEGER_MIN = -(2**63)


def _fits_sqlite_integer(value: str) -> str:
    if int(value) > SQLITE_INTEGER_MAX:
        raise ValueError("snowflake out of range")
    return value


# Discord snowflakes: unsigned decimal, must fit SQLite's signed 64-bit INTEGER.
Snowflake = Annotated[
    str,
    StringConstraints(pattern=r"^\d{1,19}$"),
    AfterValidator(_fits_sqlite_integer),
]
Position = Annotated[int, Field(ge=0, le=SQLITE_INTEGER_MAX)]
Amount = Annotated[int, Field(ge=SQLITE_INTEGER_MIN, le=SQLITE_INTEGER_MAX)]


# ---------------------------------------------------------------------------
# Parameter models
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore", frozen=True)


class NoParams(_Params):
    pass


class TableParams(_Params):
    table: str


class UserParams(_Params):
    userId: Snowflake


class BalanceParams(UserParams):
    balance: Amount


class TransactionParams(UserParams):
    amount: Amount
    reason: str


class PageParams(_Params):
    startPosition: Position
    items: Position


class UserPageParams(PageParams):
    userId: Snowflake


class GuildPageParams(PageParams):
    guildId: Snowflake


class UserGuildParams(UserParams):
    guildId: Snowflake


class AwardXpParams(UserGuildParams):
    awardedXp: Amount


Handler = Callable[[Any], Awaitable[dict[str, Any]]]


def load_bot_credentials(path: Path | None) -> dict[str, Any]:
    """Read the bot credentials JSON (ClientId, OwnerIds), if configured."""
    if path is None:
        return {}
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read bot credentials file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Bot credentials file {path} must contain an object")
    return data


class DataAccessor:
    """Async operations over the bot database, one per registered operation."""

    def __init__(
        self,
        database_path: Path,
        disabled_operations: Iterable[str] = (),
        bot_credentials: Mapping[str, Any] | None = None,
    ):
        self.database_path = Path(database_path)
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{self.database_path}")
        self.bot_credentials = dict(bot_credentials or {})
        self._disabled = {name.lower() for name in disabled_operations}
        self._initialized = False

        self._operations: dict[str, tuple[type[_Params], Handler]] = {
            "getBotInfo": (NoParams, self.get_bot_info),
            "getTables": (NoParams, self.get_tables),
            "getFields": (TableParams, self.get_fields),
            "getBalance": (UserParams, self.get_balance),
            "setBalance": (BalanceParams, self.set_balance),
            "createTransaction": (TransactionParams, self.create_transaction),
            "getTransactions": (UserPageParams, self.get_transactions),
            "getGuildRank": (UserGuildParams, self.get_guild_rank),
            "getGlobalRank": (UserParams, self.get_global_rank),
            "getGuildXp": (UserGuildParams, self.get_guild_xp),
            "setGuildXp": (AwardXpParams, self.set_guild_xp),
            "getGlobalXp": (UserParams, self.get_global_xp),
            "getGuildXpLeaderboard": (GuildPageParams, self.get_guild_xp_leaderboard),
            "getGlobalXpLeaderboard": (PageParams, self.get_global_xp_leaderboard),
            "getGuildXpRoleRewards": (GuildPageParams, self.get_guild_xp_role_rewards),
            "getGuildXpCurrencyRewards": (GuildPageParams, self.get_guild_xp_currency_rewards),
        }

    # ----- Lifecycle -----

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def operations(self) -> list[str]:
        """Names of the operations this accessor serves (disabled ones excluded)."""
        return [name for name in self._operations if not self.is_disabled(name)]

    def is_disabled(self, operation: str) -> bool:
        return operation.lower() in self._disabled

    async def initialize(self) -> None:
        """Open the database and check it is reachable. Safe to call twice."""
        if self._initialized:
            return
        if not self.database_path.exists():
            raise ConfigurationError(f"Database not found at {self.database_path}")
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        self._initialized = True
        logger.info(
            "Data accessor initialized",
            extra={
                "log_data": {
                    "database": str(self.database_path),
                    "disabled_operations": sorted(self._disabled),
                }
            },
        )

    async def close(self) -> None:
        await self.engine.dispose()
        self._initialized = False

    # ----- Dispatch -----

    async def call(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """
        Run a named operation with raw request parameters.

        Raises:
            AccessorNotInitialized: initialize() has not completed
            OperationDisabled: The operation is switched off in configuration
            UnknownOperation: No handler is registered under that name
            InvalidParameter: A parameter has the wrong type or format
            NotFound: The addressed user, guild or table does not exist
            DataAccessError: The database failed
        """
        if not self._initialized:
            raise AccessorNotInitialized()
        if self.is_disabled(operation):
            raise OperationDisabled()
        try:
            model, handler = self._operations[operation]
        except KeyError:
            raise UnknownOperation(f"Unknown operation '{operation}'.") from None

        try:
            parsed = model.model_validate(dict(params))
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise InvalidParameter(f"Invalid value for: {', '.join(fields)}.") from e

        try:
            return await handler(parsed)
        except SQLAlchemyError as e:
            logger.exception(
                "Database error",
                extra={"log_data": {"operation": operation}},
            )
            raise DataAccessError("Database error.") from e

    # ----- Bot info -----

    async def get_bot_info(self, params: NoParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    text(
                        "SELECT CurrencySign, CurrencyName, CurrencyPluralName, "
                        "XpPerMessage, XpMinutesTimeout FROM BotConfig LIMIT 1"
                    )
                )
            ).mappings().first()
        if row is None:
            raise NotFound("Bot configuration not found.")

        owners = self.bot_credentials.get("OwnerIds") or []
        client_id = self.bot_credentials.get("ClientId")
        return {
            "bot": {
                "id": None if client_id is None else str(client_id),
                "owners": [str(owner) for owner in owners],
                "currency": {
                    "sign": row["CurrencySign"],
                    "name": row["CurrencyName"],
                    "pluralName": row["CurrencyPluralName"],
                },
                "xp": {
                    "perMessage": row["XpPerMessage"],
                    "interval": row["XpMinutesTimeout"],
                },
            }
        }

    async def get_tables(self, params: NoParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            return {"tables": await self._table_names(conn)}

    async def get_fields(self, params: TableParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            if params.table not in await self._table_names(conn):
                raise NotFound(f"{params.table} is not present in the database.")
            quoted = params.table.replace('"', '""')
            rows = (await conn.execute(text(f'PRAGMA table_info("{quoted}")'))).mappings().all()
        return {"fields": [row["name"] for row in rows]}

    # ----- Currency -----

    async def get_balance(self, params: UserParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    text(
                        "SELECT CAST(UserId AS TEXT) AS userId, CurrencyAmount AS balance "
                        "FROM DiscordUser WHERE UserId = :user_id"
                    ),
                    {"user_id": int(params.userId)},
                )
            ).mappings().first()
        if row is None:
            raise NotFound("User not found.")
        return dict(row)

    async def set_balance(self, params: BalanceParams) -> dict[str, Any]:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                text("UPDATE DiscordUser SET CurrencyAmount = :balance WHERE UserId = :user_id"),
                {"balance": params.balance, "user_id": int(params.userId)},
            )
            if result.rowcount < 1:
                raise NotFound("User not found.")
        return {"userId": params.userId, "balance": params.balance}

    async def create_transaction(self, params: TransactionParams) -> dict[str, Any]:
        date_added = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        async with self.engine.begin() as conn:
            result = await conn.execute(
                text(
                    "INSERT INTO CurrencyTransactions (UserId, Amount, Reason, DateAdded) "
                    "VALUES (:user_id, :amount, :reason, :date_added)"
                ),
                {
                    "user_id": int(params.userId),
                    "amount": params.amount,
                    "reason": params.reason,
                    "date_added": date_added,
                },
            )
        return {"userId": params.userId, "transactionId": result.lastrowid}

    async def get_transactions(self, params: UserPageParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT Id AS transactionId, Amount AS amount, Reason AS reason, "
                        "DateAdded AS dateAdded FROM CurrencyTransactions "
                        "WHERE UserId = :user_id ORDER BY Id DESC LIMIT :items OFFSET :start"
                    ),
                    {
                        "user_id": int(params.userId),
                        "items": params.items,
                        "start": params.startPosition,
                    },
                )
            ).mappings().all()
        return {"userId": params.userId, "transactions": [dict(row) for row in rows]}

    # ----- XP -----

    async def get_guild_rank(self, params: UserGuildParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            rank = await self._guild_rank(conn, params.userId, params.guildId)
        return {"userId": params.userId, "rank": rank}

    async def get_global_rank(self, params: UserParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            rank = await self._global_rank(conn, params.userId)
        return {"userId": params.userId, "rank": rank}

    async def get_guild_xp(self, params: UserGuildParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            return await self._guild_xp(conn, params.userId, params.guildId)

    async def set_guild_xp(self, params: AwardXpParams) -> dict[str, Any]:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                text(
                    "UPDATE UserXpStats SET AwardedXp = :awarded "
                    "WHERE UserId = :user_id AND GuildId = :guild_id"
                ),
                {
                    "awarded": params.awardedXp,
                    "user_id": int(params.userId),
                    "guild_id": int(params.guildId),
                },
            )
            if result.rowcount < 1:
                raise NotFound("User/guild not found.")
            return await self._guild_xp(conn, params.userId, params.guildId)

    async def get_global_xp(self, params: UserParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    text(
                        "SELECT COUNT(*) AS entries, COALESCE(SUM(Xp), 0) AS xp "
                        "FROM UserXpStats WHERE UserId = :user_id"
                    ),
                    {"user_id": int(params.userId)},
                )
            ).mappings().one()
            if row["entries"] == 0:
                raise NotFound("User not found.")
            rank = await self._global_rank(conn, params.userId)

        level = calc_level(row["xp"])
        return {
            "userId": params.userId,
            "globalXp": row["xp"],
            "level": level.level,
            "levelXp": level.level_xp,
            "requiredXp": level.required_xp,
            "rank": rank,
        }

    async def get_guild_xp_leaderboard(self, params: GuildPageParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT CAST(UserId AS TEXT) AS userId, Xp + AwardedXp AS totalXp "
                        "FROM UserXpStats WHERE GuildId = :guild_id "
                        "ORDER BY totalXp DESC LIMIT :items OFFSET :start"
                    ),
                    {
                        "guild_id": int(params.guildId),
                        "items": params.items,
                        "start": params.startPosition,
                    },
                )
            ).mappings().all()
        return {"guildId": params.guildId, "leaderboard": _leaderboard(rows, params.startPosition)}

    async def get_global_xp_leaderboard(self, params: PageParams) -> dict[str, Any]:
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT CAST(UserId AS TEXT) AS userId, SUM(Xp) AS totalXp "
                        "FROM UserXpStats GROUP BY UserId "
                        "ORDER BY totalXp DESC LIMIT :items OFFSET :start"
                    ),
                    {"items": params.items, "start": params.startPosition},
                )
            ).mappings().all()
        return {"leaderboard": _leaderboard(rows, params.startPosition)}

    async def get_guild_xp_role_rewards(self, params: GuildPageParams) -> dict[str, Any]:
        rewards = await self._guild_rewards(
            params, "XpRoleReward", "CAST(r.RoleId AS TEXT) AS roleId"
        )
        return {"guildId": params.guildId, "rewards": rewards}

    async def get_guild_xp_currency_rewards(self, params: GuildPageParams) -> dict[str, Any]:
        rewards = await self._guild_rewards(params, "XpCurrencyReward", "r.Amount AS amount")
        return {"guildId": params.guildId, "rewards": rewards}

    # ----- Helpers -----

    async def _table_names(self, conn: AsyncConnection) -> list[str]:
        rows = await conn.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        )
        return [row[0] for row in rows]

    async def _guild_rank(self, conn: AsyncConnection, user_id: str, guild_id: str) -> int:
        rows = await conn.execute(
            text(
                "SELECT CAST(UserId AS TEXT) FROM UserXpStats WHERE GuildId = :guild_id "
                "ORDER BY Xp + AwardedXp DESC"
            ),
            {"guild_id": int(guild_id)},
        )
        return _rank_of(user_id, [row[0] for row in rows])

    async def _global_rank(self, conn: AsyncConnection, user_id: str) -> int:
        rows = await conn.execute(
            text(
                "SELECT CAST(UserId AS TEXT) FROM UserXpStats "
                "GROUP BY UserId ORDER BY SUM(Xp) DESC"
            )
        )
        return _rank_of(user_id, [row[0] for row in rows])

    async def _guild_xp(self, conn: AsyncConnection, user_id: str, guild_id: str) -> dict[str, Any]:
        row = (
            await conn.execute(
                text(
                    "SELECT Xp, AwardedXp FROM UserXpStats "
                    "WHERE UserId = :user_id AND GuildId = :guild_id"
                ),
                {"user_id": int(user_id), "guild_id": int(guild_id)},
            )
        ).mappings().first()
        if row is None:
            raise NotFound("User/guild not found.")

        total = row["Xp"] + row["AwardedXp"]
        level = calc_level(total)
        return {
            "userId": user_id,
            "guildId": guild_id,
            "guildXp": row["Xp"],
            "awardedXp": row["AwardedXp"],
            "totalXp": total,
            "level": level.level,
            "levelXp": level.level_xp,
            "requiredXp": level.required_xp,
            "rank": await self._guild_rank(conn, user_id, guild_id),
        }

    async def _guild_rewards(
        self, params: GuildPageParams, table: str, value_column: str
    ) -> list[dict[str, Any]]:
        # `table` and `value_column` come from the two callers above, never from a request.
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        f"SELECT r.Level AS level, {value_column} FROM {table} r "
                        "JOIN XpSettings s ON r.XpSettingsId = s.Id "
                        "JOIN GuildConfigs g ON s.GuildConfigId = g.Id "
                        "WHERE g.GuildId = :guild_id ORDER BY r.Level "
                        "LIMIT :items OFFSET :start"
                    ),
                    {
                        "guild_id": int(params.guildId),
                        "items": params.items,
                        "start": params.startPosition,
                    },
                )
            ).mappings().all()
        return [dict(row) for row in rows]


def _rank_of(user_id: str, ranking: list[str]) -> int:
    """1-based position of user_id; users without XP rank after everyone else."""
    try:
        return ranking.index(user_id) + 1
    except ValueError:
        return len(ranking) + 1


def _leaderboard(rows: Iterable[Mapping[str, Any]], start: int) -> list[dict[str, Any]]:
    return [
        {
            "userId": row["userId"],
            "totalXp": row["totalXp"],
            "level": calc_level(row["totalXp"]).level,
            "rank": start + position + 1,
        }
        for position, row in enumerate(rows)
    ]
