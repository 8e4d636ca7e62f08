from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    # Pricing defaults; site_settings rows override them at runtime.
    capital_city_name: str = "abidjan"
    capital_tariff: int = 180000
    interior_tariff: int = 150000
    currency: str = "XOF"

    tracking_max_attempts: int = 5
    tracking_window_minutes: int = 15
    tracking_cooldown_minutes: int = 30

    documents_bucket: str = "company-documents"
    max_document_bytes: int = 10 * 1024 * 1024

    enable_stripe: bool = False
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    payment_success_url: str = ""
    payment_cancel_url: str = ""
    password_reset_redirect_url: str = ""
    auth_timeout_seconds: float = 10.0
    allow_insecure_webhooks: bool = Field(
        default=False,
        validation_alias=AliasChoices("ALLOW_INSECURE_WEBHOOKS"),
    )

    enable_sms_notifications: bool = False
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    sms_default_country_code: str = "225"

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: list[str] = Field(
        default_factory=lambda: [
            "phone",
            "email",
            "address",
            "residence_address",
            "id_number",
            "customer_phone",
            "customer_email",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    rate_limit_api_enabled: bool = False
    rate_limit_api_per_min: int = 300
    rate_limit_webhook_enabled: bool = True
    rate_limit_stripe_ip_per_min: int = 120

    docs_enabled: bool = Field(default=True, validation_alias=AliasChoices("DOCS_ENABLED"))
    openapi_enabled: bool = Field(default=True, validation_alias=AliasChoices("OPENAPI_ENABLED"))
    expose_error_details: bool = False

    security_headers_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("SECURITY_HEADERS_ENABLED", "SECURE_HEADERS_ENABLED"),
    )

    admin_ip_allowlist_raw: str = Field(
        default="",
        validation_alias=AliasChoices("ADMIN_IP_ALLOWLIST"),
    )
    trusted_proxy_cidrs_raw: str = Field(
        default="",
        validation_alias=AliasChoices("TRUSTED_PROXY_CIDRS"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "PATCH",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
        "Stripe-Signature",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return _parse_list_value(value)
        return value

    @property
    def admin_ip_allowlist(self) -> list[str]:
        return _parse_list_value(self.admin_ip_allowlist_raw)

    @property
    def trusted_proxy_cidrs(self) -> list[str]:
        return _parse_list_value(self.trusted_proxy_cidrs_raw)

@lru_cache

def get_settings() -> Settings:
    return Settings()
