"""Configuration utilities for robust estimation.

Configs live in the rigpose.configs module as hydra yaml files. Each config holds a `ransac` node, whose `_target_`
is the engine class, with nested `options` and `estimator` nodes.
"""

from logging import LoggerAdapter
from typing import List, Optional

import hydra
from hydra.utils import instantiate
from omegaconf import DictConfig, OmegaConf

from rigpose.estimator.ransac import Ransac, RansacOptions

CONFIG_MODULE = "rigpose.configs"
DEFAULT_CONFIG_NAME = "generalized_relative_pose"


def load_config(config_name: str = DEFAULT_CONFIG_NAME, overrides: Optional[List[str]] = None) -> DictConfig:
    """Composes a config from the rigpose.configs module.

    Args:
        config_name: name of the yaml file, without extension.
        overrides: hydra overrides, e.g. ["ransac.options.max_error=1e-4"].

    Returns:
        Composed config.
    """
    with hydra.initialize_config_module(config_module=CONFIG_MODULE, version_base=None):
        return hydra.compose(config_name=config_name, overrides=overrides or [])


def instantiate_ransac(config_name: str = DEFAULT_CONFIG_NAME, overrides: Optional[List[str]] = None) -> Ransac:
    """Instantiates the robust estimation engine, with its options and estimator, from a config."""
    cfg = load_config(config_name, overrides)
    return instantiate(cfg.ransac)


def load_ransac_options(config_name: str = DEFAULT_CONFIG_NAME, overrides: Optional[List[str]] = None) -> RansacOptions:
    """Instantiates only the RansacOptions of a config."""
    cfg = load_config(config_name, overrides)
    return instantiate(cfg.ransac.options)


def log_configuration(cfg: DictConfig, logger: LoggerAdapter) -> None:
    """Logs the complete configuration hierarchy as yaml."""
    logger.info("=" * 80)
    logger.info("RIGPOSE CONFIGURATION")
    logger.info("=" * 80)
    logger.info("\n%s", OmegaConf.to_yaml(cfg))


def log_ransac_options(options: RansacOptions, logger: LoggerAdapter) -> None:
    """Logs a concise summary of the robust estimation options."""
    logger.info("Robust estimation options:")
    for key, value in options._asdict().items():
        logger.info("   • %s: %s", key, value)
