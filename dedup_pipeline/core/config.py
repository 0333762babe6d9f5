"""Load run configuration from YAML + environment."""

import json
import os
from typing import Optional

import yaml

from .errors import ConfigError
from .types import DedupConfig, LLMSettings, OracleKind, RunConfig


def _read_file(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()
    try:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse config {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def _pick(section: dict, cls) -> dict:
    known = {f.name for f in cls.__dataclass_fields__.values()}
    unknown = set(section) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return dict(section)


def _api_key_for(model: str, base_url: Optional[str]) -> str:
    if model.startswith("anthropic:") and not base_url:
        return os.environ.get("ANTHROPIC_API_KEY", "")
    return os.environ.get("OPENAI_API_KEY", "")


def load_config(path: Optional[str] = None, overrides: Optional[dict] = None) -> RunConfig:
    """Build a validated RunConfig.

    Precedence (lowest first): defaults, YAML/JSON file, environment,
    explicit overrides (CLI flags). Overrides may target either section
    using "dedup.<key>" / "llm.<key>" or a bare DedupConfig field name.
    """
    data = {}
    if path:
        if not os.path.exists(path):
            raise ConfigError(f"Config file not found: {path}")
        data = _read_file(path)

    dedup_section = data.get("dedup") or {}
    llm_section = data.get("llm") or {}
    if not isinstance(dedup_section, dict) or not isinstance(llm_section, dict):
        raise ConfigError("'dedup' and 'llm' sections must be mappings")

    dedup_kwargs = _pick(dedup_section, DedupConfig)
    llm_kwargs = _pick(llm_section, LLMSettings)

    # Environment
    if os.environ.get("AI_MODEL"):
        llm_kwargs["model"] = os.environ["AI_MODEL"]
    if os.environ.get("LLM_BASE_URL"):
        llm_kwargs["base_url"] = os.environ["LLM_BASE_URL"]
    if os.environ.get("DEDUPE_OUTPUT_FOLDER") and not dedup_kwargs.get("dump_dir"):
        dedup_kwargs["dump_dir"] = os.environ["DEDUPE_OUTPUT_FOLDER"]

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key.startswith("llm."):
            llm_kwargs[key[4:]] = value
        else:
            dedup_kwargs[key.removeprefix("dedup.")] = value

    try:
        dedup = DedupConfig(**dedup_kwargs)
        llm = LLMSettings(**llm_kwargs)
    except TypeError as e:
        raise ConfigError(str(e))

    if not llm.api_key:
        llm.api_key = _api_key_for(llm.model, llm.base_url)

    valid_oracles = {k.value for k in OracleKind}
    if llm.oracle not in valid_oracles:
        raise ConfigError(
            f"oracle must be one of {sorted(valid_oracles)}, got {llm.oracle!r}"
        )
    if not isinstance(llm.max_output_tokens, int) or llm.max_output_tokens <= 0:
        raise ConfigError(f"max_output_tokens must be a positive integer, got {llm.max_output_tokens!r}")

    dedup.validate()
    return RunConfig(dedup=dedup, llm=llm, config_path=path or "")
