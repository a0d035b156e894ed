"""
Shared test fixtures for the connector test suite.

Key fixtures:
- cipher: A CredentialCipher keyed with a known test secret (session-scoped,
  key derivation is deliberately slow)
- store: A RevocationStore backed by a temporary file
- issue_credential: A factory that issues and registers credentials
- database: A temporary SQLite database with the bot's tables and some data
- accessor: A DataAccessor opened on that database

Testing approach:
- test_revocation.py, test_credentials.py, test_schemas.py, test_levels.py:
  unit tests for each component in isolation
- test_dispatch.py: the request pipeline with a stub accessor
- test_accessor.py: the SQL operations against the temporary database
- test_server.py: HTTP requests through the Starlette app (in-memory, via
  httpx.ASGITransport)
- test_manage_credentials.py: the administrative CLI
"""

import sqlite3

import pytest

from economy_connector.accessor import DataAccessor
from economy_connector.credentials import CredentialCipher, CredentialIssuer, CredentialValidator
from economy_connector.revocation import RevocationStore
from tests.sample_data import GUILD_A, GUILD_B, TEST_SALT, TEST_SECRET, USER_A, USER_B, USER_C

SCHEMA = """
CREATE TABLE BotConfig (
    Id INTEGER PRIMARY KEY,
    CurrencySign TEXT,
    CurrencyName TEXT,
    CurrencyPluralName TEXT,
    XpPerMessage INTEGER,
    XpMinutesTimeout INTEGER
);
CREATE TABLE DiscordUser (
    Id INTEGER PRIMARY KEY,
    UserId INTEGER NOT NULL UNIQUE,
    Username TEXT,
    CurrencyAmount INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE CurrencyTransactions (
    Id INTEGER PRIMARY KEY AUTOINCREMENT,
    UserId INTEGER NOT NULL,
    Amount INTEGER NOT NULL,
    Reason TEXT,
    DateAdded TEXT
);
CREATE TABLE UserXpStats (
    Id INTEGER PRIMARY KEY,
    UserId INTEGER NOT NULL,
    GuildId INTEGER NOT NULL,
    Xp INTEGER NOT NULL DEFAULT 0,
    AwardedXp INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE GuildConfigs (
    Id INTEGER PRIMARY KEY,
    GuildId INTEGER NOT NULL
);
CREATE TABLE XpSettings (
    Id INTEGER PRIMARY KEY,
    GuildConfigId INTEGER NOT NULL
);
CREATE TABLE XpRoleReward (
    Id INTEGER PRIMARY KEY,
    XpSettingsId INTEGER NOT NULL,
    Level INTEGER NOT NULL,
    RoleId INTEGER NOT NULL
);
CREATE TABLE XpCurrencyReward (
    Id INTEGER PRIMARY KEY,
    XpSettingsId INTEGER NOT NULL,
    Level INTEGER NOT NULL,
    Amount INTEGER NOT NULL
);
"""


# ---------------------------------------------------------------------------
# Credential fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def cipher() -> CredentialCipher:
    return CredentialCipher(TEST_SECRET, TEST_SALT)


@pytest.fixture
def keys_file(tmp_path):
    return tmp_path / "keys.json"


@pytest.fixture
def store(keys_file) -> RevocationStore:
    return RevocationStore(keys_file)


@pytest.fixture
def issuer(cipher, store) -> CredentialIssuer:
    return CredentialIssuer(cipher, store)


@pytest.fixture
def validator(cipher, store) -> CredentialValidator:
    return CredentialValidator(cipher, store)


@pytest.fixture
def issue_credential(issuer):
    """
    Factory fixture that issues (and registers) credentials.

    Usage in tests:
        async def test_something(issue_credential):
            credential = await issue_credential(operations=["getBalance"])
    """

    async def _issue(
        subject: str = USER_A,
        tenant: str | None = None,
        operations: list[str] | None = None,
    ) -> str:
        return await issuer.issue(subject, tenant, operations or ["getBalance"])

    return _issue


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def database(tmp_path):
    """Temporary bot database with two guilds worth of users and XP."""
    path = tmp_path / "NadekoBot.db"
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT INTO BotConfig (CurrencySign, CurrencyName, CurrencyPluralName, "
            "XpPerMessage, XpMinutesTimeout) VALUES ('$', 'Coin', 'Coins', 3, 5)"
        )
        conn.executemany(
            "INSERT INTO DiscordUser (UserId, Username, CurrencyAmount) VALUES (?, ?, ?)",
            [(int(USER_A), "alice", 500), (int(USER_B), "bob", 20)],
        )
        conn.executemany(
            "INSERT INTO CurrencyTransactions (UserId, Amount, Reason, DateAdded) "
            "VALUES (?, ?, ?, ?)",
            [
                (int(USER_A), 100, "daily", "2026-01-01 10:00:00.000"),
                (int(USER_A), -30, "gamble", "2026-01-02 10:00:00.000"),
                (int(USER_A), 250, "award", "2026-01-03 10:00:00.000"),
                (int(USER_B), 20, "daily", "2026-01-01 11:00:00.000"),
            ],
        )
        conn.executemany(
            "INSERT INTO UserXpStats (UserId, GuildId, Xp, AwardedXp) VALUES (?, ?, ?, ?)",
            [
                (int(USER_A), int(GUILD_A), 100, 0),
                (int(USER_B), int(GUILD_A), 50, 10),
                (int(USER_C), int(GUILD_A), 10, 0),
                (int(USER_A), int(GUILD_B), 40, 0),
            ],
        )
        conn.execute("INSERT INTO GuildConfigs (Id, GuildId) VALUES (1, ?)", (int(GUILD_A),))
        conn.execute("INSERT INTO XpSettings (Id, GuildConfigId) VALUES (1, 1)")
        conn.executemany(
            "INSERT INTO XpRoleReward (XpSettingsId, Level, RoleId) VALUES (1, ?, ?)",
            [(5, 700000000000000001), (2, 700000000000000002)],
        )
        conn.execute("INSERT INTO XpCurrencyReward (XpSettingsId, Level, Amount) VALUES (1, 3, 100)")
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def bot_credentials():
    return {"ClientId": 123456789012345678, "OwnerIds": [111111111111111111]}


@pytest.fixture
async def accessor(database, bot_credentials):
    accessor = DataAccessor(database, bot_credentials=bot_credentials)
    await accessor.initialize()
    yield accessor
    await accessor.close()
