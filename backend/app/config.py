from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    backend_cors_origins: str = "http://localhost:5173"
    ai_request_timeout_seconds: float = 120.0
    strategy_sample_size: int = 50
    max_upload_bytes: int = 20 * 1024 * 1024
    log_level: str = "INFO"

    model_config = {"env_file": "../.env", "env_file_encoding": "utf-8"}

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.backend_cors_origins.split(",")]


settings = Settings()
