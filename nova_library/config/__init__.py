"""Application configuration."""
from nova_library.config.config import Config, TestConfig

__all__ = ['Config', 'TestConfig']
