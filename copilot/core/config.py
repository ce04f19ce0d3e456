"""Configuration management for the sales copilot."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Provider credentials
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    PERPLEXITY_API_KEY: str | None = Field(default=None, description="Perplexity API key")
    PERPLEXITY_BASE_URL: str = Field(
        default="https://api.perplexity.ai", description="Perplexity OpenAI-compatible endpoint"
    )

    # Environment
    COPILOT_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Models
    CLAUDE_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for specialists and synthesis"
    )
    ROUTER_MODEL: str = Field(
        default="claude-3-5-haiku-20241022", description="Model for routing and extraction calls"
    )
    PERPLEXITY_MODEL: str = Field(default="sonar", description="Model for external research")

    # Per-stage timeouts (seconds)
    LLM_TIMEOUT_SECONDS: float = Field(default=120.0, description="Hard timeout for any LLM request")
    ROUTER_TIMEOUT_SECONDS: float = Field(default=15.0, description="Routing LLM call timeout")
    RESEARCH_DECISION_TIMEOUT_SECONDS: float = Field(
        default=15.0, description="Research-need LLM call timeout"
    )
    KNOWLEDGE_TIMEOUT_SECONDS: float = Field(default=3.0, description="Knowledge lookup timeout")
    RESEARCH_TIMEOUT_SECONDS: float = Field(default=20.0, description="Live research call timeout")
    RESEARCH_CACHE_TIMEOUT_SECONDS: float = Field(
        default=3.0, description="Research cache read timeout"
    )
    SPECIALIST_TIMEOUT_SECONDS: float = Field(default=18.0, description="Per-specialist timeout")
    ENTITY_RESOLUTION_TIMEOUT_SECONDS: float = Field(
        default=10.0, description="Entity resolution timeout"
    )
    SYNTHESIS_TIMEOUT_SECONDS: float = Field(default=60.0, description="Final synthesis timeout")
    TURN_TIMEOUT_SECONDS: float = Field(default=150.0, description="Outer ceiling for one turn")

    # Specialist fan-out
    SPECIALIST_CONCURRENCY: int = Field(default=3, description="Max specialists running at once")
    COUNCIL_MAX_AGENTS: int = Field(default=3, description="Upper bound for council mode")
    ESCALATION_MAX_AGENTS: int = Field(default=4, description="Upper bound for escalation mode")
    EVALUATION_AGENTS: list[str] = Field(
        default_factory=lambda: ["icp_fit", "stakeholder_map"],
        description="Specialist stack used for account evaluation routes",
    )

    # Router
    ROUTER_MIN_CONFIDENCE: float = Field(
        default=0.70, description="LLM specialist routes below this confidence fall back to chat"
    )

    # Knowledge base
    KNOWLEDGE_RESULT_LIMIT: int = Field(default=6, description="Max knowledge snippets per turn")
    KNOWLEDGE_RICH_THRESHOLD: int = Field(
        default=3, description="Hit count at which the knowledge base counts as rich"
    )

    # Research
    RESEARCH_ENABLED: bool = Field(default=True, description="Inject external research")
    RESEARCH_CACHE_TTL_DAYS: int = Field(default=7, description="Research cache TTL in days")
    RESEARCH_MAX_TOKENS: int = Field(default=2200, description="Max tokens for research answers")

    # Entity resolution thresholds
    ENTITY_AUTO_LINK_SCORE: float = Field(default=0.85, description="Auto-link score threshold")
    ENTITY_MIN_MARGIN: float = Field(
        default=0.15, description="Required gap between top two candidates for auto-link"
    )
    ENTITY_PLAUSIBLE_SCORE: float = Field(
        default=0.45, description="Score above which candidates are offered for disambiguation"
    )
    ENTITY_EXTRACT_MIN_CONFIDENCE: float = Field(
        default=0.70, description="Min LLM extraction confidence to upsert an account"
    )
    ENTITY_CANDIDATE_LIMIT: int = Field(default=3, description="Candidates offered to the user")

    # Synthesis
    SYNTHESIS_MAX_TOKENS: int = Field(default=2000, description="Max tokens for the final reply")
    AUTO_TITLE_ENABLED: bool = Field(default=True, description="Generate thread titles")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
