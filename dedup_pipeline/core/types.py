"""All shared data types for the dedup pipeline."""

from dataclasses import dataclass, field, asdict
from typing import Optional, Any
from enum import Enum
import json

from .errors import ConfigError


class RoundState(str, Enum):
    INIT = "init"
    ROUND_RUNNING = "round_running"
    CONTINUE = "continue"
    STOP = "stop"
    DONE = "done"


class OracleKind(str, Enum):
    LLM = "llm"
    EXACT = "exact"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class NewsItem:
    text: str
    sources: tuple = ()

    def to_dict(self) -> dict:
        return {"text": self.text, "sources": list(self.sources)}

    @classmethod
    def from_raw(cls, data: Any) -> 'NewsItem':
        """Build an item from a plain string or a dict with text/summary + sources."""
        if isinstance(data, NewsItem):
            return data
        if isinstance(data, str):
            return cls(text=data)
        if isinstance(data, dict):
            text = data.get("text") or data.get("summary") or ""
            sources = data.get("sources") or []
            if isinstance(sources, str):
                sources = [sources]
            return cls(text=str(text), sources=tuple(str(s) for s in sources))
        raise TypeError(f"Cannot build NewsItem from {type(data).__name__}")


@dataclass(frozen=True)
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: 'UsageStats') -> 'UsageStats':
        return UsageStats(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OracleResult:
    items: list[NewsItem]
    usage: UsageStats = field(default_factory=UsageStats)


@dataclass
class BatchRunResult:
    results: list[list[NewsItem]]
    usage: UsageStats = field(default_factory=UsageStats)
    call_count: int = 0
    failed_batches: list[int] = field(default_factory=list)


@dataclass
class RoundReport:
    round_number: int
    input_count: int
    output_count: int
    batch_count: int
    call_count: int = 0
    failed_batches: int = 0
    usage: UsageStats = field(default_factory=UsageStats)
    duration_seconds: float = 0.0

    @property
    def ratio(self) -> float:
        if self.input_count == 0:
            return 1.0
        return self.output_count / self.input_count

    def to_dict(self) -> dict:
        data = asdict(self)
        data["ratio"] = round(self.ratio, 4)
        return data


@dataclass
class DedupResult:
    items: list[NewsItem] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)
    call_count: int = 0
    rounds: list[RoundReport] = field(default_factory=list)
    max_rounds: int = 0

    @property
    def round_count(self) -> int:
        return len(self.rounds)


@dataclass
class DedupConfig:
    batch_size: int = 150
    max_parallel_requests: int = 5
    inter_group_delay_ms: int = 2000
    inter_round_delay_ms: int = 4000
    stop_ratio_threshold: float = 0.98
    min_items_per_round: int = 30
    stop_comparison: str = ">="  # ">=" | ">"
    shuffle_seed: Optional[int] = None
    dump_dir: Optional[str] = None

    def validate(self) -> 'DedupConfig':
        """Fail fast on settings that would break the round loop."""
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ConfigError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if not isinstance(self.max_parallel_requests, int) or self.max_parallel_requests <= 0:
            raise ConfigError(
                f"max_parallel_requests must be a positive integer, got {self.max_parallel_requests!r}"
            )
        if not isinstance(self.min_items_per_round, int) or self.min_items_per_round <= 0:
            raise ConfigError(
                f"min_items_per_round must be a positive integer, got {self.min_items_per_round!r}"
            )
        for name in ("inter_group_delay_ms", "inter_round_delay_ms"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"{name} must be >= 0, got {value!r}")
        threshold = self.stop_ratio_threshold
        if (not isinstance(threshold, (int, float)) or isinstance(threshold, bool)
                or not 0.0 < threshold <= 1.0):
            raise ConfigError(f"stop_ratio_threshold must be in (0, 1], got {threshold!r}")
        if self.stop_comparison not in (">=", ">"):
            raise ConfigError(f"stop_comparison must be '>=' or '>', got {self.stop_comparison!r}")
        if self.shuffle_seed is not None and (
                not isinstance(self.shuffle_seed, int) or isinstance(self.shuffle_seed, bool)):
            raise ConfigError(f"shuffle_seed must be an integer or null, got {self.shuffle_seed!r}")
        return self

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LLMSettings:
    model: str = "openai:gpt-4.1-2025-04-14"
    base_url: Optional[str] = None
    api_key: str = ""
    max_output_tokens: int = 32768
    cache_dir: Optional[str] = None
    oracle: str = "llm"


@dataclass
class RunConfig:
    dedup: DedupConfig = field(default_factory=DedupConfig)
    llm: LLMSettings = field(default_factory=LLMSettings)
    config_path: str = ""


@dataclass
class RunReport:
    status: str  # "done" | "fallback" | "failed"
    started_at: str = ""
    completed_at: Optional[str] = None
    duration_seconds: float = 0.0
    input_count: int = 0
    output_count: int = 0
    rounds: list[dict] = field(default_factory=list)
    oracle_calls: int = 0
    usage: dict = field(default_factory=dict)
    api_cost_usd: float = 0.0
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    def save(self, path: str) -> None:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(asdict(self), f, ensure_ascii=False, indent=2)

    @classmethod
    def load(cls, path: str) -> 'RunReport':
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls(**{k: v for k, v in data.items()
                      if k in {f.name for f in cls.__dataclass_fields__.values()}})
