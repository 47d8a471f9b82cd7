from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from functools import lru_cache
from pathlib import Path
from typing import Literal


def find_env_file():
    """Find .env.local file in project (for local development only)"""
    possible_paths = [
        Path(__file__).parent.parent.parent / '.env.local',  # backend/.env.local
        Path.cwd() / '.env.local',
    ]
    for p in possible_paths:
        if p.exists():
            return str(p)
    return None  # No env file found, will use environment variables


class Settings(BaseSettings):
    env: str = 'development'
    api_v1_prefix: str = '/api/v1'
    project_name: str = 'LivePoll'
    log_level: str = 'INFO'

    # Persistence / realtime backend
    # memory: in-process tables (single process, tests)
    # sql: SQLAlchemy tables + in-process fan-out (the service)
    # http: remote livepoll service (clients)
    backend_kind: Literal['memory', 'sql', 'http'] = 'memory'
    database_url: str = 'sqlite:///./livepoll.db'
    backend_base_url: str = 'http://localhost:8000'
    backend_timeout_seconds: float = 15.0

    # Sessions
    access_code_max_attempts: int = 5
    default_poll_frequency_minutes: int = 5

    # Poll cadence
    poll_min_excerpt_chars: int = 50
    poll_generator_timeout_seconds: float = 30.0
    # independent: manual trigger leaves the automatic schedule alone
    # reset_schedule: manual trigger re-arms a full interval
    manual_trigger_policy: Literal['independent', 'reset_schedule'] = 'independent'
    # count_all | latest | first -- applied when aggregating results
    duplicate_answer_policy: Literal['count_all', 'latest', 'first'] = 'count_all'

    # Poll generator
    # Backward-compatible aliases: POLL_PROVIDER, LLM_PROVIDER
    poll_generator_provider: Literal['openrouter', 'groq'] = Field(
        default='openrouter',
        validation_alias=AliasChoices('POLL_GENERATOR_PROVIDER', 'POLL_PROVIDER', 'LLM_PROVIDER'),
    )
    openrouter_base_url: str = 'https://openrouter.ai/api/v1'
    openrouter_model: str = 'qwen/qwen3-0.6b-04-28:free'
    groq_model: str = Field(
        default='meta-llama/llama-4-scout-17b-16e-instruct',
        validation_alias=AliasChoices('LLM_GROQ_CHAT_MODEL', 'GROQ_MODEL'),
    )
    ai_temperature: float = 0.7
    ai_max_tokens: int = 300

    # Server-side poll generation endpoint
    server_generate_min_chars: int = 20
    server_generate_transcript_limit: int = 10

    # Credential is supplied by the end user and kept client-side
    credential_path: str = str(Path.home() / '.livepoll' / 'credentials.json')

    # Local ASR microservice (whisper.cpp)
    asr_url: str = 'http://asr:9000'
    capture_restart_delay_seconds: float = 1.0

    # CORS - comma separated origins or "*" for all
    cors_origins: str = '*'

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding='utf-8',
        extra='ignore',
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.database_url and self.database_url.startswith('postgres://'):
            self.database_url = self.database_url.replace('postgres://', 'postgresql://', 1)

    @property
    def poll_generator_model(self) -> str:
        if self.poll_generator_provider == 'groq':
            return self.groq_model
        return self.openrouter_model


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
