from typing import Optional


class RuntimeConfig:
    """
    Singleton class to hold global runtime configurations.
    """
    # Verbose by default
    VERBOSE: bool = True
    CONFIG_FILE: str = "hearth.yaml"
    LOG_FILE: Optional[str] = None


config = RuntimeConfig()
