import os
from decimal import Decimal, InvalidOperation
from typing import List


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _env_int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    def _env_decimal(self, name: str, default: str) -> Decimal:
        raw = (os.getenv(name) or "").strip()
        try:
            v = Decimal(raw or default)
        except InvalidOperation:
            return Decimal(default)
        return v if v.is_finite() and v >= 0 else Decimal(default)

    def _env_bool(self, name: str, default: bool) -> bool:
        raw = (os.getenv(name) or "").strip().lower()
        if not raw:
            return default
        return raw in {"1", "true", "yes", "on"}

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv("APP_DATABASE_URL") or os.getenv('DATABASE_URL') or 'postgresql://localhost/backoffice'
        self.db_pool_min = self._env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = self._env_int("DB_POOL_MAX_SIZE", 10)
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.api_host = os.getenv("API_HOST", "0.0.0.0").strip() or "0.0.0.0"
        self.api_port = self._env_int("API_PORT", 8000)

        # Document defaults.
        self.default_currency = (os.getenv("DEFAULT_CURRENCY") or "BHD").strip().upper() or "BHD"
        self.invoice_tax_percent = self._env_decimal("INVOICE_TAX_PERCENT", "10")
        self.doc_number_max_attempts = max(1, self._env_int("DOC_NUMBER_MAX_ATTEMPTS", 999))
        # Closed catalogs set this to false: unresolved lines are skipped instead of auto-created.
        self.catalog_auto_create = self._env_bool("CATALOG_AUTO_CREATE", True)

        self.log_debug = self._env_bool("LOG_DEBUG", False)

settings = Settings()
