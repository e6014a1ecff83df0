"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class AllocationConfig(BaseSettings):
    """Loan allocation engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_ALLOCATION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Allocation rules
    default_strategy: str = "penalties_fees_interest_principal"
    default_currency: str = "USD"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_allocation_steps: bool = False  # DEBUG record per installment touched


# Global configuration instance
config = AllocationConfig()


def get_config() -> AllocationConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AllocationConfig:
    """Reload configuration from environment"""
    global config
    config = AllocationConfig()
    return config
