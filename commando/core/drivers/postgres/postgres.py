import getpass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

try:
    # pylint: disable=import-error
    import asyncpg
except ModuleNotFoundError:
    asyncpg = None

from ... import data_manager, errors
from ..base import FIELDS, BaseDriver, Record
from ..log import log

__all__ = ["PostgresDriver"]

_PKG_PATH = Path(__file__).parent
DDL_SCRIPT_PATH = _PKG_PATH / "ddl.sql"
DROP_DDL_SCRIPT_PATH = _PKG_PATH / "drop_ddl.sql"

_COLUMNS = ", ".join(FIELDS)


def _row_to_record(row) -> Record:
    return {field: row[field] for field in FIELDS}


class PostgresDriver(BaseDriver):

    _pool: Optional["asyncpg.pool.Pool"] = None

    @classmethod
    async def initialize(cls, **storage_details) -> None:
        if asyncpg is None:
            raise errors.MissingExtraRequirements(
                "Commando must be installed with the [postgres] extra to use the PostgreSQL driver"
            )
        cls._pool = await asyncpg.create_pool(**storage_details)
        with DDL_SCRIPT_PATH.open() as fs:
            await cls._pool.execute(fs.read())

    @classmethod
    async def teardown(cls) -> None:
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None

    @staticmethod
    def get_config_details() -> Dict[str, Any]:
        host = input("Enter PostgreSQL server address [localhost]: ")
        if not host:
            host = "localhost"
        while True:
            port = input("Enter PostgreSQL server port [5432]: ")
            if not port:
                port = 5432
                break
            else:
                try:
                    port = int(port)
                except ValueError:
                    print("Port must be a number")
                else:
                    break
        user = input("Enter PostgreSQL server username [postgres]: ")
        if not user:
            user = "postgres"

        password = getpass.getpass("Enter PostgreSQL server password (input will be hidden): ")

        database = input("Enter PostgreSQL database name [postgres]: ")
        if not database:
            database = "postgres"

        return {
            "host": host,
            "port": port,
            "user": user,
            "password": password,
            "database": database,
        }

    async def get_record(self, guild_id: str) -> Optional[Record]:
        row = await self._execute(
            f"SELECT {_COLUMNS} FROM commando_settings WHERE guild = $1",
            guild_id,
            method=self._pool.fetchrow,
        )
        if row is None:
            return None
        return _row_to_record(row)

    async def aiter_records(self) -> AsyncIterator[Tuple[str, Record]]:
        query = f"SELECT guild, {_COLUMNS} FROM commando_settings"
        log.invisible(query)
        async with self._pool.acquire() as conn, conn.transaction():
            async for row in conn.cursor(query):
                yield row["guild"], _row_to_record(row)

    async def upsert(self, guild_id: str, field: str, text: Optional[str]) -> None:
        self._check_field(field)
        # The field name is checked against FIELDS above, so it is safe to format in.
        await self._execute(
            f"INSERT INTO commando_settings (guild, {field}) VALUES ($1, $2) "
            f"ON CONFLICT (guild) DO UPDATE SET {field} = excluded.{field}",
            guild_id,
            text,
        )

    async def delete(self, guild_id: str) -> None:
        await self._execute("DELETE FROM commando_settings WHERE guild = $1", guild_id)

    @classmethod
    async def delete_all_data(
        cls, *, interactive: bool = False, drop_db: Optional[bool] = None, **kwargs
    ) -> None:
        """Delete all data being stored by this driver.

        Parameters
        ----------
        interactive : bool
            Set to ``True`` to allow the method to ask the user for
            input from the console, regarding the other unset parameters
            for this method.
        drop_db : Optional[bool]
            Set to ``True`` to drop the entire database for the current
            instance. Otherwise, only the settings table is dropped.

        """
        if interactive is True and drop_db is None:
            print(
                "Please choose from one of the following options:\n"
                " 1. Drop the entire PostgreSQL database for this instance, or\n"
                " 2. Delete all of the settings within this database, without dropping the"
                " database itself."
            )
            options = ("1", "2")
            while True:
                resp = input("> ")
                try:
                    drop_db = not bool(options.index(resp))
                except ValueError:
                    print("Please type a number corresponding to one of the options.")
                else:
                    break
        if drop_db is True:
            storage_details = data_manager.storage_details()
            database = storage_details["database"].replace('"', '""')
            await cls._pool.execute(f'DROP DATABASE "{database}"')
        else:
            with DROP_DDL_SCRIPT_PATH.open() as fs:
                await cls._pool.execute(fs.read())

    @classmethod
    async def _execute(cls, query: str, *args, method: Optional[Callable] = None) -> Any:
        if method is None:
            method = cls._pool.execute
        log.invisible("Query: %s", query)
        if args:
            log.invisible("Args: %s", args)
        return await method(query, *args)
