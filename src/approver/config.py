"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.normalize_authorizer: 规范化授权器名称
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    # 审批引擎只处理该签发者名称的 CSR
    signer_name: str = "cert-manager.io/webhook-serving"
    authorizer: Literal["always-allow", "named-principal", "service-endpoint"] = "named-principal"
    approval_reason: str = "AutoApproved"
    approval_message: str = "Automatically approved by webhook-operator"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("authorizer", mode="before")
    @classmethod
    def normalize_authorizer(cls, value: Any) -> Any:
        """允许 named_principal / NAMED-PRINCIPAL 等写法。"""
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                    self._data = data if isinstance(data, dict) else {}
                except (OSError, ValueError):
                    self._data = {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按字段名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
