# src/infra/database.py
"""
Менеджер базы данных PostgreSQL (Supabase).
Пул соединений, автоматический retry при обрыве связи и вызов
удалённых процедур (RPC) с именованными параметрами.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncGenerator, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg

T = TypeVar("T")

# Имя SQL функции или параметра: [schema.]identifier
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?")


def _retry_settings() -> tuple[int, float]:
    """Число попыток и базовая задержка из конфига (DB_RETRY_ATTEMPTS, DB_RETRY_DELAY)."""
    from src.config import settings
    return settings.database.DB_RETRY_ATTEMPTS, settings.database.DB_RETRY_DELAY


def retry_on_connection_error(
    max_attempts: int | None = None,
    delay: float | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Декоратор для автоматического ретрая при ошибках подключения.

    Args:
        max_attempts: Максимальное количество попыток (None: DB_RETRY_ATTEMPTS из конфига)
        delay: Базовая задержка между попытками в секундах, растёт линейно
            (None: DB_RETRY_DELAY из конфига)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempts, base_delay = max_attempts, delay
            if attempts is None or base_delay is None:
                configured_attempts, configured_delay = _retry_settings()
                attempts = attempts if attempts is not None else configured_attempts
                base_delay = base_delay if base_delay is not None else configured_delay
            attempts = max(1, attempts)

            last_error: Exception | None = None

            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except (
                    asyncpg.PostgresConnectionError,
                    asyncpg.InterfaceError,
                    ConnectionRefusedError,
                    OSError,
                ) as e:
                    last_error = e
                    if attempt < attempts:
                        await log_info(
                            f"Ошибка подключения к БД (попытка {attempt}/{attempts}): {e}",
                            type_msg=TypeMsg.WARNING,
                        )
                        await asyncio.sleep(base_delay * attempt)
                    else:
                        await log_error(f"Не удалось подключиться к БД после {attempts} попыток: {e}")

            raise last_error  # type: ignore

        return wrapper  # type: ignore

    return decorator


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.fullmatch(name):
        raise ValueError(f"Недопустимый идентификатор SQL: {name!r}")
    return name


class DatabaseManager:
    """
    Менеджер подключений к PostgreSQL.

    Экземпляр создаётся явно и передаётся зависимым компонентам.
    """

    def __init__(self, dsn: str | None = None) -> None:
        """
        Args:
            dsn: DSN строка подключения (если None, берётся из конфига при connect)
        """
        self._dsn = dsn
        self._pool: Pool | None = None

    @property
    def pool(self) -> Pool:
        """Возвращает пул соединений."""
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован. Вызовите connect() сначала.")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @retry_on_connection_error()
    async def connect(
        self,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: int | None = None,
    ) -> None:
        """
        Создаёт пул соединений к PostgreSQL.

        Args:
            min_size: Минимальный размер пула
            max_size: Максимальный размер пула
            command_timeout: Таймаут команд (секунды)
        """
        if self._pool is not None:
            return

        from src.config import settings
        db_settings = settings.database

        await log_info(f"Подключение к PostgreSQL {db_settings.DB_HOST}:{db_settings.DB_PORT}...")

        self._pool = await asyncpg.create_pool(
            dsn=self._dsn or db_settings.dsn,
            min_size=min_size if min_size is not None else db_settings.DB_MIN_POOL_SIZE,
            max_size=max_size if max_size is not None else db_settings.DB_MAX_POOL_SIZE,
            command_timeout=command_timeout if command_timeout is not None else db_settings.DB_COMMAND_TIMEOUT,
        )

        await log_info("Подключение к PostgreSQL установлено")

    async def disconnect(self) -> None:
        """Закрывает пул соединений."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("Соединение с PostgreSQL закрыто")

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """
        Контекстный менеджер для получения соединения из пула.

        Example:
            async with db.acquire() as conn:
                result = await conn.fetch("SELECT * FROM rides")
        """
        async with self.pool.acquire() as connection:
            yield connection

    @retry_on_connection_error()
    async def execute(self, query: str, *args: Any) -> str:
        """Выполняет SQL запрос без возврата данных."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @retry_on_connection_error()
    async def fetch(self, query: str, *args: Any) -> list[Record]:
        """Выполняет SQL запрос и возвращает все строки."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @retry_on_connection_error()
    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        """
        Выполняет SQL запрос и возвращает одну строку.

        Returns:
            Запись или None, если строк нет
        """
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error()
    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        """Выполняет SQL запрос и возвращает одно значение."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    @staticmethod
    def _rpc_query(function: str, params: dict[str, Any]) -> str:
        _check_identifier(function)
        arguments = ", ".join(
            f"{_check_identifier(name)} => ${index}"
            for index, name in enumerate(params, start=1)
        )
        return f"SELECT * FROM {function}({arguments})"

    async def rpc_rows(self, function: str, **params: Any) -> list[dict[str, Any]]:
        """
        Вызывает хранимую функцию и возвращает все строки результата.

        Для табличных функций (RETURNS TABLE / SETOF); пустой набор даёт [].

        Raises:
            ValueError: Недопустимое имя функции или параметра
        """
        query = self._rpc_query(function, params)
        rows = await self.fetch(query, *params.values())
        return [dict(row) for row in rows]

    async def rpc(self, function: str, **params: Any) -> Any:
        """
        Вызывает хранимую функцию с именованными параметрами.

        Логика функций (тарифы, верификация, принятие брони) живёт на стороне
        базы данных; здесь только транспорт вызова.

        Args:
            function: Имя функции, допускается схема (public.mark_sent)
            **params: Параметры, передаются как name => $N

        Returns:
            Скаляр, если функция вернула одну строку из одного столбца;
            иначе список строк (dict), для пустого набора []

        Raises:
            ValueError: Недопустимое имя функции или параметра
        """
        rows = await self.rpc_rows(function, **params)
        if len(rows) == 1 and len(rows[0]) == 1:
            return next(iter(rows[0].values()))
        return rows

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к БД.

        Returns:
            True если подключение работает
        """
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception as e:
            await log_error(f"Health check PostgreSQL failed: {e}")
            return False
