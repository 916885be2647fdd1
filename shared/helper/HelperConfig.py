"""Environment-backed settings and logger access for the ingest pipeline."""

import logging
import os


class HelperConfig:
    """Hands every component the shared logger and typed reads of environment variables.

    Keys are upper-cased before lookup and an empty value counts as unset.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _read(self, key: str) -> str | None:
        return os.getenv(key.upper()) or None

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Raises ValueError when the variable is unset and there is no default."""
        val = self._read(key)
        if val is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        return val.strip()

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int, or a float when the value contains a dot.

        Raises:
            ValueError: If the variable is unset without a default, or is not numeric.
        """
        raw = self._read(key)
        if raw is None:
            if default is None:
                raise ValueError(f"Environment variable '{key.upper()}' is not set.")
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_missing_keys(self, keys: list[str]) -> list[str]:
        """Upper-cased names among keys that are unset or blank, in input order."""
        return [key.upper() for key in keys if not (self._read(key) or "").strip()]

    def get_logger(self) -> logging.Logger:
        return self._logger
