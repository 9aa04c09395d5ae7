from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Research chat API
    api_base_url: str = "http://localhost:3000"
    request_timeout_seconds: float = 30.0

    # Result synchronizer
    poll_interval_seconds: float = 2.0

    # Report producers (matched against the leading text of assistant messages)
    primary_producer_marker: str = "## ChatGPT (OpenAI) Research"
    secondary_producer_marker: str = "## Gemini (Google) Research"
    placeholder_body: str = (
        "Generating summary and insights..."
        "\n\n(Please keep this tab open; the Gemini section will appear shortly.)"
    )

    # User-visible notices
    mutation_error_text: str = "I'm not able to find the answer right now. Please try again."
    email_failure_text: str = (
        "Failed to send email. Please ensure your account has a valid email address."
    )

    # Logging
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "RESEARCH_CHAT_",
        "extra": "ignore",
    }

    @property
    def api_root(self) -> str:
        return self.api_base_url.strip().rstrip("/") or "http://localhost:3000"


settings = Settings()
