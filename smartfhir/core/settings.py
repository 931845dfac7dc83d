"""Application settings loaded from environment variables."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PRIVATE_KEYS_FILE = "config/auth_private_jwks.json"
DEFAULT_SCOPE = (
    "system/Patient.read system/AllergyIntolerance.read system/Procedure.read "
    "system/Condition.read system/Appointment.read system/Encounter.read "
    "system/FamilyMemberHistory.read system/Immunization.read "
    "system/Observation.read"
)
HTTP_TIMEOUT_DEFAULT = 10.0
MAX_PAGES_DEFAULT = 1


class FhirSettings(BaseSettings):
    """FHIR server and SMART backend client settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_SYS_APP_", populate_by_name=True
    )

    fhir_url: str = Field(
        default="", validation_alias=AliasChoices("FHIR_URL", "fhir_url")
    )
    client_id: str = ""
    private_keys_file: str = DEFAULT_PRIVATE_KEYS_FILE
    scope: str = DEFAULT_SCOPE
    http_timeout: float = HTTP_TIMEOUT_DEFAULT
    max_pages: int = Field(default=MAX_PAGES_DEFAULT, ge=1)
    verbose: bool = False
    cache_discovery: bool = False

    @property
    def base_url(self) -> str:
        """FHIR base URL without a trailing slash."""
        return self.fhir_url.rstrip("/")


class LogSettings(BaseSettings):
    """Structured logging settings."""

    model_config = SettingsConfigDict(env_prefix="SMARTFHIR_LOG_")

    level: str = "INFO"
    format: str = "console"
    service_name: str = "smartfhir"
