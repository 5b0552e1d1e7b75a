from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_database: str = "control_panel"
    mysql_user: str = "control_panel"
    mysql_password: str = "change_me_mysql_app"

    session_secret: str = "change_me_session_secret_at_least_32_bytes"
    session_issuer: str = "control-panel"
    session_ttl_days: int = 7
    session_cookie_names: tuple[str, ...] = (
        "__Secure-control-panel.session_token",
        "control-panel.session_token",
    )
    session_cookie_secure: bool = False

    invitation_ttl_days: int = 7
    impersonation_ttl_minutes: int = 60

    admin_app_url: str = "http://localhost:3000"
    main_app_url: str = "https://app.example.com"

    resend_api_key: str | None = None
    email_from: str = "notifications@example.com"
    email_reply_to: str | None = None

    recent_activity_limit: int = 50
    user_search_limit: int = 50
    active_org_window_days: int = 7
    growth_series_months: int = 6

    @property
    def database_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.mysql_user}:{self.mysql_password}"
            f"@{self.mysql_host}:{self.mysql_port}/{self.mysql_database}"
        )

    @property
    def session_cookie_name(self) -> str:
        # Browsers only accept the __Secure- prefix over HTTPS.
        return self.session_cookie_names[0] if self.session_cookie_secure else self.session_cookie_names[-1]


settings = Settings()
