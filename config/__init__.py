from config.settings import BaseConfig, DevelopmentConfig, TestingConfig, ProductionConfig

CONFIG_BY_NAME = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}

__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'CONFIG_BY_NAME',
]
