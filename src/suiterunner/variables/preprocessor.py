"""
Pre-processor pipeline.

Runs value-producing functions before a request (fake data, timestamps,
encrypted strings, database rows) and writes their results into a
``VariableScope``.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from faker import Faker

from suiterunner.config import DEFAULT_ENCRYPTION_IV, DEFAULT_ENCRYPTION_KEY
from suiterunner.db.config import DatabaseConfigError
from suiterunner.dsl.models import PreProcessStep

if TYPE_CHECKING:
    from suiterunner.config import RunnerSettings
    from suiterunner.db.client import DatabaseClient
    from suiterunner.variables.store import VariableScope

logger = structlog.get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class PreProcessError(Exception):
    """Raised when a pre-processor function fails."""

    def __init__(self, function: str, reason: str) -> None:
        self.function = function
        self.reason = reason
        super().__init__(f"PreProcess '{function}' failed: {reason}")


def encrypt_text(text: str, key: str = DEFAULT_ENCRYPTION_KEY, iv: str = DEFAULT_ENCRYPTION_IV) -> str:
    """AES-256-CTR encrypt ``text`` and return lowercase hex."""
    encryptor = Cipher(
        algorithms.AES(key.encode("utf-8")),
        modes.CTR(iv.encode("utf-8")),
    ).encryptor()
    return (encryptor.update(text.encode("utf-8")) + encryptor.finalize()).hex()


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class PreProcessor:
    """
    Runs ``PreProcessStep`` lists sequentially against a scope.

    Output rules:
    - ``mapTo`` with a dict result sets each var to ``result[key]``
    - a dict result with neither ``var`` nor ``mapTo`` is spread key by key
    - anything else is stored under ``var`` (default: the function name)
    """

    def __init__(
        self,
        scope: VariableScope,
        db_client: DatabaseClient | None = None,
        config: RunnerSettings | None = None,
        faker: Faker | None = None,
    ) -> None:
        self._scope = scope
        self._db_client = db_client
        self._key = config.encryption_key if config else DEFAULT_ENCRYPTION_KEY
        self._iv = config.encryption_iv if config else DEFAULT_ENCRYPTION_IV
        self._faker = faker or Faker()
        self._log = logger.bind(component="preprocessor")

        self._faker_functions: dict[str, Callable[[], Any]] = {
            "faker.name": lambda: self._faker.name(),
            "faker.firstName": lambda: self._faker.first_name(),
            "faker.lastName": lambda: self._faker.last_name(),
            "faker.email": lambda: self._faker.email(),
            "faker.username": lambda: self._faker.user_name(),
            "faker.phone": lambda: self._faker.phone_number(),
            "faker.address": lambda: self._faker.address(),
            "faker.city": lambda: self._faker.city(),
            "faker.uuid": lambda: self._faker.uuid4(),
            "faker.password": lambda: self._faker.password(),
            "faker.company": lambda: self._faker.company(),
        }

    def run(self, steps: list[PreProcessStep]) -> None:
        """
        Run every step in order.

        Raises:
            PreProcessError: If a function fails
            DatabaseConfigError: If a ``dbQuery`` names an unconfigured database
        """
        for step in steps:
            value = self.evaluate(step)
            self._store(step, value)

    def evaluate(self, step: PreProcessStep) -> Any:
        """Compute the value of one step without storing it."""
        args = self._scope.inject_object(list(step.args))
        function = step.function

        if function in self._faker_functions:
            return self._faker_functions[function]()

        match function:
            case "date.now" | "timestamp":
                return str(int(time.time() * 1000))
            case "date.iso":
                return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
            case "encrypt":
                text = "" if not args or args[0] is None else str(args[0])
                return encrypt_text(text, self._key, self._iv)
            case "generateUser":
                return self._generate_user()
            case "dbQuery":
                return self._db_query(args)
            case _ if function.startswith("faker."):
                return self._faker_fallback(function, args)
            case _:
                self._log.warning("Unknown preProcess function", function=function)
                return ""

    def _generate_user(self) -> dict[str, str]:
        first_name = self._faker.first_name()
        last_name = self._faker.last_name()
        return {
            "firstName": first_name,
            "lastName": last_name,
            "email": self._faker.email(),
            "username": self._faker.user_name(),
            "phone": self._faker.phone_number(),
            "password": self._faker.password(),
            "address": self._faker.street_address(),
            "city": self._faker.city(),
            "company": self._faker.company(),
        }

    def _db_query(self, args: list[Any]) -> Any:
        if len(args) < 2 or not args[0] or not args[1]:
            raise PreProcessError("dbQuery", "expected args [query, dbName]")
        if self._db_client is None:
            raise PreProcessError("dbQuery", "no database client configured")

        query, db_name = str(args[0]), str(args[1])
        try:
            rows = self._db_client.run_query(query, db_name)
        except DatabaseConfigError:
            raise
        except Exception as e:
            raise PreProcessError("dbQuery", str(e)) from e
        return rows[0] if rows else ""

    def _faker_fallback(self, function: str, args: list[Any]) -> Any:
        method_name = to_snake_case(function.split(".", 1)[1])
        try:
            method = getattr(self._faker, method_name)
        except AttributeError:
            self._log.warning("Unknown faker function", function=function)
            return ""
        if not callable(method):
            self._log.warning("Unknown faker function", function=function)
            return ""
        try:
            return method(*args)
        except Exception as e:
            raise PreProcessError(function, str(e)) from e

    def _store(self, step: PreProcessStep, value: Any) -> None:
        if isinstance(value, dict) and step.map_to:
            for var, key in step.map_to.items():
                self._scope.set(var, value.get(key), local=step.local)
            self._log.debug("PreProcess mapped", function=step.function, variables=list(step.map_to))
            return

        if isinstance(value, dict) and not step.var:
            for key, item in value.items():
                self._scope.set(key, item, local=step.local)
            self._log.debug("PreProcess spread", function=step.function, variables=list(value))
            return

        name = step.var or step.function
        self._scope.set(name, value, local=step.local)
        self._log.debug("PreProcess stored", function=step.function, variable=name, local=step.local)
