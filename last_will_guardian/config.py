"""Configuration for Last Will Guardian service."""

from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Last Will Guardian configuration."""

    # Watched ledger
    owner_address: str = Field(default="0xservice", alias="OWNER_ADDRESS")
    target_address: str = Field(default="0xtarget", alias="TARGET_ADDRESS")
    # Comma separated "address:percent" pairs, e.g. "0xabc:50,0xdef:50"
    beneficiaries: str = Field(default="", alias="BENEFICIARIES")
    timeout_seconds: int = Field(default=30 * 24 * 3600, alias="TIMEOUT_SECONDS")
    use_service_account: bool = Field(default=True, alias="USE_SERVICE_ACCOUNT")
    # Comma separated token addresses swept alongside native currency
    token_addresses: str = Field(default="", alias="TOKEN_ADDRESSES")

    # Redis - receipt journal
    redis_host: str = Field(default="redis", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    redis_receipts_key: str = Field(default="last_will:receipts", alias="REDIS_RECEIPTS_KEY")
    redis_activity_key: str = Field(default="last_will:last_active_ts", alias="REDIS_ACTIVITY_KEY")
    redis_receipts_max: int = Field(default=1000, alias="REDIS_RECEIPTS_MAX")

    # Telegram - distribution and degraded-service alerts
    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: Optional[str] = Field(default=None, alias="TELEGRAM_CHAT_ID")

    # Monitoring
    check_interval_seconds: int = Field(default=60, alias="CHECK_INTERVAL_SECONDS")
    # Optional endpoint proving the target is alive; a 200 counts as a heartbeat
    target_health_url: Optional[str] = Field(default=None, alias="TARGET_HEALTH_URL")
    health_check_timeout_seconds: float = Field(default=10.0, alias="HEALTH_CHECK_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def telegram_enabled(self) -> bool:
        return all([self.telegram_bot_token, self.telegram_chat_id])

    @property
    def health_check_enabled(self) -> bool:
        return bool(self.target_health_url)

    @property
    def beneficiary_pairs(self) -> List[Tuple[str, int]]:
        """Parse ``beneficiaries`` into ordered ``(address, percent)`` pairs."""
        pairs = []
        for item in self.beneficiaries.split(","):
            item = item.strip()
            if not item:
                continue
            address, sep, percent = item.rpartition(":")
            if not sep or not address:
                raise ValueError(f"Beneficiary entry {item!r} must look like address:percent")
            pairs.append((address.strip(), int(percent)))
        return pairs

    @property
    def token_address_list(self) -> List[str]:
        return [t.strip() for t in self.token_addresses.split(",") if t.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
