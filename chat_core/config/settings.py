"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    log_level: str = Field(default="INFO", description="日志级别（DEBUG / INFO / WARNING / ERROR）")

    # ---- 存储后端 ----
    storage_root: str = Field(default=".storage/chat_tree.json", description="JSON 树存储文件")
    store_base_url: Optional[str] = Field(default=None, description="REST 实时树的基础 URL")
    store_auth_token: Optional[str] = Field(default=None, description="REST 实时树的 auth 令牌")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 会话发现 ----
    chat_container_tokens: List[str] = Field(
        default_factory=lambda: ["chat", "message", "conversation"],
        description="顶层 key 中包含这些片段（不区分大小写）即视为会话容器",
    )
    explorer_enabled: bool = Field(
        default=True,
        description="路径索引未命中时是否扫描整个存储根",
    )
    fallback_root: str = Field(default="messages", description="仅用会话 ID 拼接的兜底路径前缀")

    # ---- 发送 ----
    max_outbound_messages: int = Field(
        default=3,
        ge=1,
        description="每个会话中本人最多可发送的消息数",
    )

    # ---- 文档注册表（请求/订单） ----
    registry_collection: str = Field(default="requests", description="请求/订单所在集合")
    registry_subject_fields: List[str] = Field(
        default_factory=lambda: ["title", "requestTitle", "subject", "project"],
    )
    registry_name_fields: List[str] = Field(
        default_factory=lambda: ["clientName", "companyName", "name"],
    )
    registry_owner_fields: List[str] = Field(
        default_factory=lambda: ["companyId", "clientId", "userId", "ownerId", "deliveryId"],
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("chat_container_tokens")
    @classmethod
    def validate_tokens(cls, v: List[str]) -> List[str]:
        tokens = [t.strip().lower() for t in v if t and t.strip()]
        if not tokens:
            raise ValueError("chat_container_tokens must not be empty")
        return tokens

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log_level: {v!r}")
        return level

    @field_validator("fallback_root")
    @classmethod
    def validate_fallback_root(cls, v: str) -> str:
        root = v.strip().strip("/")
        if not root:
            raise ValueError("fallback_root must not be empty")
        return root

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
