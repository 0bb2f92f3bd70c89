from caixabean.config.schema import Config, ConfigurationError, ConsolidatorConfig, load_config

__all__ = ["Config", "ConfigurationError", "ConsolidatorConfig", "load_config"]
