"""配置（YAML overlay + pydantic 校验）。"""

from __future__ import annotations

from interactor.config.loader import InteractorConfig, load_config, load_config_dicts

__all__ = ["InteractorConfig", "load_config", "load_config_dicts"]
