from __future__ import annotations

from pcruntime.config.loader import PcRuntimeConfig, load_config, load_config_dicts

__all__ = ["PcRuntimeConfig", "load_config", "load_config_dicts"]
