"""Configuration model and loaders for bookgen.

Responsibilities:
- Define provider, per-kind, and run settings as typed dataclasses.
- Provide loader entry points for YAML- and environment-based configuration.
- Validate values before a run so failures surface before any paid call.

Key types:
- `ProviderSettings`: identity, model, concurrency and rate limits of one provider.
- `KindSettings`: chunking and output settings for one generation kind.
- `BookgenConfig`: normalized settings for a task run.
- `ConfigLoader`: static construction helpers for `BookgenConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models.datatypes import TaskKind
from .parsing import (
    normalize_optional_string,
    parse_image_size,
    parse_optional_int,
    parse_permissive_boolean,
)

_DEFAULT_LANGUAGE_MODEL = "gpt-4.1-mini"
_DEFAULT_MEDIA_MODEL = "gpt-image-1"
_DEFAULT_BASE_URL = "https://api.openai.com/v1"
_SUPPORTED_PROVIDER_IDS = frozenset({"openai"})
_SUPPORTED_TOKENIZERS = frozenset({"cl100k_base", "o200k_base", "whitespace"})
_DEFAULT_QUALITY_PROMPT = "masterpiece, best quality, absurdres"
_DEFAULT_NEGATIVE_PROMPT = (
    "worst quality, bad quality, worst detail, bad anatomy, bad hands, extra digits, "
    "fewer, extra, missing, error, watermark, unfinished, displeasing, "
    "chromatic aberration, signature, artistic error, username, scan"
)


@dataclass(slots=True)
class ProviderSettings:
    """Identity and limits of one generation or language-model provider.

    Attributes:
        name: Provider identity used to share one rate limiter across runs.
        provider: Provider implementation id (`openai`).
        model: Model identifier sent with each request.
        base_url: API base URL.
        api_key: Optional API key (never persisted in task artifacts).
        concurrency_limit: Maximum simultaneous in-flight calls.
        rpm: Requests-per-minute start rate cap.
        qps: Requests-per-second start rate cap; wins over `rpm` when set.
        timeout_seconds: Per-request HTTP timeout.
    """

    name: str
    provider: str = "openai"
    model: str = _DEFAULT_LANGUAGE_MODEL
    base_url: str = _DEFAULT_BASE_URL
    api_key: str | None = None
    concurrency_limit: int | None = 1
    rpm: int | None = None
    qps: int | None = None
    timeout_seconds: float = 120.0

    @property
    def pool_size(self) -> int:
        """Return the bounded pool size for this provider."""

        return max(1, self.concurrency_limit or 1)

    def validate(self) -> None:
        if self.provider not in _SUPPORTED_PROVIDER_IDS:
            supported = ", ".join(sorted(_SUPPORTED_PROVIDER_IDS))
            raise ValueError(
                f"Unsupported provider `{self.provider}` for `{self.name}`; supported: {supported}."
            )
        if not self.model.strip():
            raise ValueError(f"`{self.name}.model` must be a non-empty string.")
        for field_name in ("rpm", "qps"):
            value = getattr(self, field_name)
            if value is not None and value < 0:
                raise ValueError(f"`{self.name}.{field_name}` must not be negative.")
        if self.timeout_seconds <= 0:
            raise ValueError(f"`{self.name}.timeout_seconds` must be positive.")


@dataclass(slots=True)
class KindSettings:
    """Chunking and output settings for one generation kind."""

    chunk_tokens: int
    units_per_chapter: int | None = None
    images_per_scene: int = 2
    image_size: str = "1024*1024"
    save_every_chunk: bool = False
    source_language: str = "English"
    target_language: str = "Chinese"

    @property
    def dimensions(self) -> tuple[int, int]:
        return parse_image_size(self.image_size)

    def validate(self, kind: TaskKind) -> None:
        if self.chunk_tokens <= 0:
            raise ValueError(f"`{kind.value}.chunk_tokens` must be a positive integer.")
        if kind.produces_units:
            if self.units_per_chapter is None or self.units_per_chapter <= 0:
                raise ValueError(
                    f"`{kind.value}.units_per_chapter` must be a positive integer."
                )
            if self.images_per_scene <= 0:
                raise ValueError(f"`{kind.value}.images_per_scene` must be a positive integer.")


def _default_language_provider() -> ProviderSettings:
    return ProviderSettings(name="language", concurrency_limit=2, rpm=30)


def _default_media_provider() -> ProviderSettings:
    return ProviderSettings(name="media", model=_DEFAULT_MEDIA_MODEL, concurrency_limit=1, qps=1)


def _default_illustration() -> KindSettings:
    return KindSettings(chunk_tokens=5000, units_per_chapter=3)


def _default_translation() -> KindSettings:
    return KindSettings(chunk_tokens=4000, save_every_chunk=True)


@dataclass(slots=True)
class BookgenConfig:
    """Runtime configuration for task splitting and runs.

    Attributes:
        store_dir: Root directory of the JSON task store.
        language_provider: Language-model provider settings (primary pool).
        media_provider: Media-generation provider settings (media pool).
        illustration: Settings for the illustration (units) kind.
        translation: Settings for the translation (whole-chunk) kind.
        tokenizer: Token counter used by the splitter.
        pause_poll_seconds: Upper bound on pause/cancel detection latency.
        quality_prompt: Fixed quality tags appended to media prompts.
        style_prompt: Optional style tags appended to media prompts.
        negative_prompt: Negative prompt sent with every media request.
        character_references: Character name to reference media path/URL.
    """

    store_dir: Path = Path("bookgen-store")
    language_provider: ProviderSettings = field(default_factory=_default_language_provider)
    media_provider: ProviderSettings = field(default_factory=_default_media_provider)
    illustration: KindSettings = field(default_factory=_default_illustration)
    translation: KindSettings = field(default_factory=_default_translation)
    tokenizer: str = "cl100k_base"
    pause_poll_seconds: float = 1.0
    quality_prompt: str = _DEFAULT_QUALITY_PROMPT
    style_prompt: str = ""
    negative_prompt: str = _DEFAULT_NEGATIVE_PROMPT
    character_references: dict[str, str] = field(default_factory=dict)

    def kind_settings(self, kind: TaskKind) -> KindSettings:
        """Return the settings block for a generation kind."""

        if kind is TaskKind.ILLUSTRATION:
            return self.illustration
        return self.translation

    def validate(self) -> None:
        """Validate configuration values before splitting or running."""

        self.language_provider.validate()
        self.media_provider.validate()
        self.illustration.validate(TaskKind.ILLUSTRATION)
        self.translation.validate(TaskKind.TRANSLATION)
        if self.tokenizer not in _SUPPORTED_TOKENIZERS:
            supported = ", ".join(sorted(_SUPPORTED_TOKENIZERS))
            raise ValueError(f"Unsupported `tokenizer` `{self.tokenizer}`; supported: {supported}.")
        if self.pause_poll_seconds <= 0:
            raise ValueError("`pause_poll_seconds` must be positive.")


class ConfigLoader:
    """Factory methods for creating `BookgenConfig` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "store_dir",
            "language_provider",
            "media_provider",
            "illustration",
            "translation",
            "tokenizer",
            "pause_poll_seconds",
            "prompts",
            "character_references",
        }
    )
    _PROVIDER_KEYS = frozenset(
        {
            "provider",
            "model",
            "base_url",
            "api_key",
            "concurrency_limit",
            "rpm",
            "qps",
            "timeout_seconds",
        }
    )
    _KIND_KEYS = frozenset(
        {
            "chunk_tokens",
            "units_per_chapter",
            "images_per_scene",
            "image_size",
            "save_every_chunk",
            "source_language",
            "target_language",
        }
    )
    _PROMPT_KEYS = frozenset({"quality", "style", "negative"})

    @staticmethod
    def from_yaml(path: Path) -> BookgenConfig:
        """Create a validated config from a YAML file."""

        payload = ConfigLoader._parse_yaml_payload(path.read_text(encoding="utf-8"), path)
        return ConfigLoader.from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_mapping(payload: Mapping[str, Any], source_label: str = "config") -> BookgenConfig:
        """Build a validated config from a mapping payload."""

        ConfigLoader._reject_unknown(payload, ConfigLoader._SUPPORTED_YAML_KEYS, source_label)
        defaults = BookgenConfig()

        store_dir_text = normalize_optional_string(payload.get("store_dir"))
        prompts = ConfigLoader._optional_mapping(payload, "prompts", source_label)
        ConfigLoader._reject_unknown(prompts, ConfigLoader._PROMPT_KEYS, f"{source_label} `prompts`")

        config = BookgenConfig(
            store_dir=Path(store_dir_text) if store_dir_text else defaults.store_dir,
            language_provider=ConfigLoader._provider_from_mapping(
                ConfigLoader._optional_mapping(payload, "language_provider", source_label),
                defaults.language_provider,
                f"{source_label} `language_provider`",
            ),
            media_provider=ConfigLoader._provider_from_mapping(
                ConfigLoader._optional_mapping(payload, "media_provider", source_label),
                defaults.media_provider,
                f"{source_label} `media_provider`",
            ),
            illustration=ConfigLoader._kind_from_mapping(
                ConfigLoader._optional_mapping(payload, "illustration", source_label),
                defaults.illustration,
                f"{source_label} `illustration`",
            ),
            translation=ConfigLoader._kind_from_mapping(
                ConfigLoader._optional_mapping(payload, "translation", source_label),
                defaults.translation,
                f"{source_label} `translation`",
            ),
            tokenizer=normalize_optional_string(payload.get("tokenizer")) or defaults.tokenizer,
            pause_poll_seconds=ConfigLoader._optional_float(
                payload, "pause_poll_seconds", source_label, defaults.pause_poll_seconds
            ),
            quality_prompt=ConfigLoader._prompt_value(prompts, "quality", defaults.quality_prompt),
            style_prompt=ConfigLoader._prompt_value(prompts, "style", defaults.style_prompt),
            negative_prompt=ConfigLoader._prompt_value(
                prompts, "negative", defaults.negative_prompt
            ),
            character_references=ConfigLoader._string_map(
                ConfigLoader._optional_mapping(payload, "character_references", source_label),
                f"{source_label} `character_references`",
            ),
        )
        config.validate()
        return config

    @staticmethod
    def from_env(
        env: Mapping[str, str] | None = None,
        base: BookgenConfig | None = None,
    ) -> BookgenConfig:
        """Overlay `BOOKGEN_*` environment variables onto a base config."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        config = base if base is not None else BookgenConfig()

        store_dir = ConfigLoader._env_string(env_map, "BOOKGEN_STORE_DIR")
        api_key = ConfigLoader._env_string(env_map, "OPENAI_API_KEY")

        language_provider = replace(
            config.language_provider,
            model=ConfigLoader._env_string(env_map, "BOOKGEN_LLM_MODEL")
            or config.language_provider.model,
            api_key=config.language_provider.api_key or api_key,
            concurrency_limit=ConfigLoader._env_int(
                env_map, "BOOKGEN_LLM_CONCURRENCY", config.language_provider.concurrency_limit
            ),
            rpm=ConfigLoader._env_int(env_map, "BOOKGEN_LLM_RPM", config.language_provider.rpm),
        )
        media_provider = replace(
            config.media_provider,
            model=ConfigLoader._env_string(env_map, "BOOKGEN_MEDIA_MODEL")
            or config.media_provider.model,
            api_key=config.media_provider.api_key or api_key,
            concurrency_limit=ConfigLoader._env_int(
                env_map, "BOOKGEN_MEDIA_CONCURRENCY", config.media_provider.concurrency_limit
            ),
            rpm=ConfigLoader._env_int(env_map, "BOOKGEN_MEDIA_RPM", config.media_provider.rpm),
            qps=ConfigLoader._env_int(env_map, "BOOKGEN_MEDIA_QPS", config.media_provider.qps),
        )
        illustration = replace(
            config.illustration,
            chunk_tokens=ConfigLoader._env_int(
                env_map, "BOOKGEN_ILLUSTRATION_TOKENS", config.illustration.chunk_tokens
            ),
            units_per_chapter=ConfigLoader._env_int(
                env_map, "BOOKGEN_SCENES_PER_CHAPTER", config.illustration.units_per_chapter
            ),
        )
        translation = replace(
            config.translation,
            chunk_tokens=ConfigLoader._env_int(
                env_map, "BOOKGEN_TRANSLATION_TOKENS", config.translation.chunk_tokens
            ),
        )

        resolved = replace(
            config,
            store_dir=Path(store_dir) if store_dir else config.store_dir,
            language_provider=language_provider,
            media_provider=media_provider,
            illustration=illustration,
            translation=translation,
        )
        resolved.validate()
        return resolved

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` is not valid YAML: {exc}") from exc
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload

    @staticmethod
    def _reject_unknown(
        payload: Mapping[str, Any], supported: frozenset[str], source_label: str
    ) -> None:
        unknown = sorted(str(key) for key in set(payload).difference(supported))
        if unknown:
            raise ValueError(f"{source_label} includes unsupported key(s): {', '.join(unknown)}.")

    @staticmethod
    def _optional_mapping(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> Mapping[str, Any]:
        raw = payload.get(key)
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")
        return raw

    @staticmethod
    def _provider_from_mapping(
        payload: Mapping[str, Any], default: ProviderSettings, source_label: str
    ) -> ProviderSettings:
        ConfigLoader._reject_unknown(payload, ConfigLoader._PROVIDER_KEYS, source_label)
        return ProviderSettings(
            name=default.name,
            provider=normalize_optional_string(payload.get("provider")) or default.provider,
            model=normalize_optional_string(payload.get("model")) or default.model,
            base_url=normalize_optional_string(payload.get("base_url")) or default.base_url,
            api_key=normalize_optional_string(payload.get("api_key")) or default.api_key,
            concurrency_limit=ConfigLoader._int_or_default(
                payload, "concurrency_limit", source_label, default.concurrency_limit
            ),
            rpm=ConfigLoader._int_or_default(payload, "rpm", source_label, default.rpm),
            qps=ConfigLoader._int_or_default(payload, "qps", source_label, default.qps),
            timeout_seconds=ConfigLoader._optional_float(
                payload, "timeout_seconds", source_label, default.timeout_seconds
            ),
        )

    @staticmethod
    def _kind_from_mapping(
        payload: Mapping[str, Any], default: KindSettings, source_label: str
    ) -> KindSettings:
        ConfigLoader._reject_unknown(payload, ConfigLoader._KIND_KEYS, source_label)
        save_every_chunk = default.save_every_chunk
        if "save_every_chunk" in payload:
            parsed = parse_permissive_boolean(payload["save_every_chunk"])
            if parsed is None:
                raise ValueError(
                    f"{source_label} field `save_every_chunk` must be a boolean value "
                    "(`true`/`false`, `1`/`0`, `yes`/`no`)."
                )
            save_every_chunk = parsed
        return KindSettings(
            chunk_tokens=ConfigLoader._int_or_default(
                payload, "chunk_tokens", source_label, default.chunk_tokens
            ),
            units_per_chapter=ConfigLoader._int_or_default(
                payload, "units_per_chapter", source_label, default.units_per_chapter
            ),
            images_per_scene=ConfigLoader._int_or_default(
                payload, "images_per_scene", source_label, default.images_per_scene
            ),
            image_size=normalize_optional_string(payload.get("image_size")) or default.image_size,
            save_every_chunk=save_every_chunk,
            source_language=normalize_optional_string(payload.get("source_language"))
            or default.source_language,
            target_language=normalize_optional_string(payload.get("target_language"))
            or default.target_language,
        )

    @staticmethod
    def _int_or_default(
        payload: Mapping[str, Any], key: str, source_label: str, default: Any
    ) -> Any:
        if key not in payload:
            return default
        try:
            parsed = parse_optional_int(payload[key], key)
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be an integer.") from exc
        return default if parsed is None else parsed

    @staticmethod
    def _optional_float(
        payload: Mapping[str, Any], key: str, source_label: str, default: float
    ) -> float:
        if key not in payload:
            return default
        raw_value = payload[key]
        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be a number.")
        normalized = normalize_optional_string(raw_value)
        if normalized is None:
            return default
        try:
            return float(normalized)
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be a number.") from exc

    @staticmethod
    def _prompt_value(prompts: Mapping[str, Any], key: str, default: str) -> str:
        if key not in prompts:
            return default
        value = prompts[key]
        return "" if value is None else str(value).strip()

    @staticmethod
    def _string_map(raw: Mapping[str, Any], source_label: str) -> dict[str, str]:
        """Read a mapping with non-empty string keys and values."""

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} contains a blank key.")
            if value_value is None:
                raise ValueError(f"{source_label} contains blank value for `{key_value}`.")
            normalized[key_value] = value_value
        return normalized

    @staticmethod
    def _env_string(env: Mapping[str, str], key: str) -> str | None:
        if key not in env:
            return None
        return normalize_optional_string(env.get(key))

    @staticmethod
    def _env_int(env: Mapping[str, str], key: str, default: Any) -> Any:
        raw_value = ConfigLoader._env_string(env, key)
        if raw_value is None:
            return default
        try:
            return int(raw_value)
        except ValueError as exc:
            raise ValueError(f"Environment variable `{key}` must be an integer.") from exc
