from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = "dev"  # "dev", "prod"
    debug: bool = True

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: str = ""  # Empty = INFO in prod, DEBUG otherwise
    log_file: str = "logs/callaudit.log"  # Only written in prod

    # ==========================================================================
    # DATABASE
    # ==========================================================================
    database_url: str = "sqlite:///./callaudit.db"

    # Key-value slot for the current user, kept outside the record store
    session_file: str = "./.callaudit_session.json"

    # ==========================================================================
    # OPENAI
    # ==========================================================================
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_transcription_model: str = "gpt-4o-mini-transcribe"
    openai_max_tokens: int = 4000  # Full rubric JSON is long

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"  # Comma-separated origins, or "*" for all

    # ==========================================================================
    # SCORING (0-10 scale)
    # ==========================================================================
    low_score_threshold: int = 5  # Detailed score <= this counts as "low"
    call_of_the_week_min_score: int = 9

    # ==========================================================================
    # ALERTS
    # ==========================================================================
    coaching_min_audits: int = 3
    coaching_min_low_scores: int = 2
    compliance_alert_limit: int = 5
    root_cause_min_audits: int = 3
    coaching_plan_max_audits: int = 10

    # ==========================================================================
    # LEADERBOARD & BADGES
    # ==========================================================================
    leaderboard_size: int = 10
    badge_min_audits: int = 5
    rapport_parameter: str = "Greeting & Opening"
    rapport_min_average: float = 8.5
    site_visit_scheduled_status: str = "Scheduled"

    # ==========================================================================
    # DEFAULT LISTS (used when the store is empty or unavailable)
    # ==========================================================================
    default_agent_emails: str = ""
    default_auditor_emails: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "prod"

    @property
    def cors_origins_list(self) -> list:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def default_agents_list(self) -> List[str]:
        return sorted({e.strip().lower() for e in self.default_agent_emails.split(",") if e.strip()})

    @property
    def default_auditors_list(self) -> List[str]:
        return sorted({e.strip().lower() for e in self.default_auditor_emails.split(",") if e.strip()})


settings = Settings()
