"""Configuration for duplicate detection."""
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


class ConfigError(ValueError):
    """Raised when the detection configuration is inconsistent."""


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and tolerances of the duplicate scoring algorithm."""
    name_weight: float = 0.40
    location_weight: float = 0.30
    date_weight: float = 0.20
    category_weight: float = 0.10
    max_distance_km: float = 15
    date_tolerance_days: int = 30

    def validate(self) -> None:
        total = (
            self.name_weight + self.location_weight +
            self.date_weight + self.category_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ConfigError(f"Scoring weights must sum to 1.0, got {total:.3f}")
        if self.max_distance_km <= 0:
            raise ConfigError("max_distance_km must be positive")
        if self.date_tolerance_days < 0:
            raise ConfigError("date_tolerance_days must not be negative")


DEFAULT_SCORING_CONFIG = ScoringConfig()


@dataclass(frozen=True)
class CandidateConfig:
    """Settings of the candidate retrieval funnel."""
    use_search_index: bool = True
    max_candidates_per_event: int = 50


DEFAULT_CANDIDATE_CONFIG = CandidateConfig()


@dataclass(frozen=True)
class DetectionConfig:
    """Complete configuration of one detection agent."""
    agent_id: str = 'duplicate-detection-agent'
    database_url: str = 'sqlite://'
    state_table_name: str = 'data-agents-state'
    recommendations_table_name: str = 'data-agents-proposals'
    meilisearch_url: Optional[str] = None
    meilisearch_api_key: Optional[str] = None
    meilisearch_index: str = 'fra_events'
    search_timeout_seconds: float = 5
    min_duplicate_score: float = 0.80
    batch_size: int = 100
    rescan_delay_days: int = 30
    exclude_statuses: List[str] = field(default_factory=list)
    dry_run: bool = False
    scoring: ScoringConfig = DEFAULT_SCORING_CONFIG
    candidates: CandidateConfig = DEFAULT_CANDIDATE_CONFIG

    @property
    def search_index_configured(self) -> bool:
        return bool(
            self.candidates.use_search_index and
            self.meilisearch_url and
            self.meilisearch_api_key
        )

    def validate(self) -> None:
        self.scoring.validate()
        if self.batch_size <= 0:
            raise ConfigError("batch_size must be positive")
        if self.rescan_delay_days < 0:
            raise ConfigError("rescan_delay_days must not be negative")
        if self.candidates.max_candidates_per_event <= 0:
            raise ConfigError("max_candidates_per_event must be positive")
        if not 0 <= self.min_duplicate_score <= 1:
            raise ConfigError("min_duplicate_score must be between 0 and 1")

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> 'DetectionConfig':
        """
        Build configuration from environment variables.

        Args:
            env: Mapping such as ``os.environ``

        Returns:
            Validated DetectionConfig

        Raises:
            ConfigError: If a value is malformed or weights are inconsistent
        """
        try:
            scoring = ScoringConfig(
                name_weight=float(env.get('NAME_WEIGHT', '0.40')),
                location_weight=float(env.get('LOCATION_WEIGHT', '0.30')),
                date_weight=float(env.get('DATE_WEIGHT', '0.20')),
                category_weight=float(env.get('CATEGORY_WEIGHT', '0.10')),
                max_distance_km=float(env.get('MAX_DISTANCE_KM', '15')),
                date_tolerance_days=int(env.get('DATE_TOLERANCE_DAYS', '30'))
            )
            candidates = CandidateConfig(
                use_search_index=parse_bool(env.get('USE_SEARCH_INDEX', 'true')),
                max_candidates_per_event=int(
                    env.get('MAX_CANDIDATES_PER_EVENT', '50')
                )
            )
            config = cls(
                agent_id=env.get('AGENT_ID', cls.agent_id),
                database_url=env.get('DATABASE_URL', cls.database_url),
                state_table_name=env.get('STATE_TABLE_NAME', cls.state_table_name),
                recommendations_table_name=env.get(
                    'RECOMMENDATIONS_TABLE_NAME', cls.recommendations_table_name
                ),
                meilisearch_url=env.get('MEILISEARCH_URL') or None,
                meilisearch_api_key=env.get('MEILISEARCH_API_KEY') or None,
                meilisearch_index=env.get('MEILISEARCH_INDEX', cls.meilisearch_index),
                search_timeout_seconds=float(env.get('SEARCH_TIMEOUT_SECONDS', '5')),
                min_duplicate_score=float(env.get('MIN_DUPLICATE_SCORE', '0.80')),
                batch_size=int(env.get('BATCH_SIZE', '100')),
                rescan_delay_days=int(env.get('RESCAN_DELAY_DAYS', '30')),
                exclude_statuses=parse_statuses(env.get('EXCLUDE_STATUSES', '')),
                dry_run=parse_bool(env.get('DRY_RUN', 'false')),
                scoring=scoring,
                candidates=candidates
            )
        except ValueError as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        config.validate()
        return config


def parse_bool(value: str) -> bool:
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def parse_statuses(value) -> List[str]:
    """Accept a comma separated string or a list of statuses."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [status.strip() for status in value if status and status.strip()]
