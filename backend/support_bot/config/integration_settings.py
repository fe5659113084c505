"""
External integration settings.
Credentials and call limits for the Lark open platform and the OpenAI API.

Version: 1.0.0
"""
from typing import List, Optional, Union
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import logging

logger = logging.getLogger(__name__)


class IntegrationSettings(BaseSettings):
    """
    Integration configuration for outbound services.

    Secrets are held as SecretStr and read through the ``get_*`` helpers.
    A secret may be given directly or as an ``env://VAR_NAME`` reference.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Lark Configuration
    # ===========================

    lark_app_id: Optional[str] = Field(
        default=None,
        description="Lark application id"
    )

    lark_app_secret: Optional[SecretStr] = Field(
        default=None,
        description="Lark application secret (supports env:// prefix)"
    )

    lark_base_url: str = Field(
        default="https://open.larksuite.com",
        description="Lark open platform base URL"
    )

    lark_bot_open_id: Optional[str] = Field(
        default=None,
        description="Open id of the bot itself, used to ignore its own messages"
    )

    lark_support_group_id: Optional[str] = Field(
        default=None,
        description="Chat id of the support team group that receives ticket notifications"
    )

    lark_support_staff_ids: Union[List[str], str] = Field(
        default_factory=list,
        description="Open ids allowed to resolve tickets by thread reply outside the support group"
    )

    lark_timeout: int = Field(
        default=10,
        ge=1,
        le=120,
        description="Lark API request timeout in seconds"
    )

    lark_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum retry attempts for Lark API calls"
    )

    # ===========================
    # OpenAI Configuration
    # ===========================

    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key (supports env:// prefix)"
    )

    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints"
    )

    openai_model: str = Field(
        default="gpt-4",
        description="Chat completion model"
    )

    openai_max_tokens: int = Field(default=800, ge=50, le=8000)

    openai_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    openai_extraction_max_tokens: int = Field(default=500, ge=50, le=4000)

    openai_extraction_temperature: float = Field(default=0.1, ge=0.0, le=2.0)

    openai_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="LLM request timeout in seconds"
    )

    openai_max_retries: int = Field(default=2, ge=1, le=10)

    max_concurrent_requests: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Maximum concurrent LLM completions"
    )

    # ===========================
    # Validators
    # ===========================

    @field_validator('lark_support_staff_ids', mode='before')
    @classmethod
    def parse_staff_ids(cls, v):
        """Parse comma-separated open ids."""
        if isinstance(v, str):
            return [staff_id.strip() for staff_id in v.split(",") if staff_id.strip()]
        return v

    @field_validator('lark_app_secret', 'openai_api_key', mode='before')
    @classmethod
    def load_secret_from_source(cls, v: Optional[Union[str, SecretStr]]) -> Optional[SecretStr]:
        """
        Load a secret from a direct value or an environment reference.

        Supports:
        - Direct value: "sk-abc123"
        - Environment variable: "env://OPENAI_API_KEY_PROD"
        """
        if v is None:
            return None

        if isinstance(v, SecretStr):
            return v

        if not isinstance(v, str):
            raise ValueError(f"Secret must be string or SecretStr, got {type(v)}")

        if not v.strip():
            return None

        if v.startswith('env://'):
            env_var = v.replace('env://', '')
            env_value = os.getenv(env_var)

            if not env_value:
                logger.warning(f"Environment variable not set: {env_var}")
                return None

            logger.info(f"Loaded secret from environment variable: {env_var}")
            return SecretStr(env_value)

        return SecretStr(v)

    # ===========================
    # Helper Methods
    # ===========================

    def get_lark_app_secret(self) -> Optional[str]:
        """
        Get Lark app secret value.

        Returns:
            Secret string or None if not set
        """
        if self.lark_app_secret:
            return self.lark_app_secret.get_secret_value()
        return None

    def get_openai_api_key(self) -> Optional[str]:
        """
        Get OpenAI API key value.

        Returns:
            API key string or None if not set
        """
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None

    @property
    def lark_configured(self) -> bool:
        return bool(self.lark_app_id and self.get_lark_app_secret())

    @property
    def llm_configured(self) -> bool:
        return bool(self.get_openai_api_key())

    def validate_integrations(self) -> List[str]:
        """
        Validate integration configuration.

        Returns:
            List of warning messages (empty if valid)
        """
        warnings = []

        if not self.lark_configured:
            warnings.append("Lark app id or secret not configured; replies cannot be sent")

        if not self.llm_configured:
            warnings.append("OpenAI API key not configured; answers fall back to the knowledge lookup")

        if not self.lark_support_group_id:
            warnings.append("Support group id not configured; ticket notifications are disabled")

        return warnings


# Create global instance
integration_settings = IntegrationSettings()

# Export
__all__ = ['IntegrationSettings', 'integration_settings']
