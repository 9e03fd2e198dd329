def section(config: dict, name: str) -> dict:
    """
    Returns a nested config mapping. An empty YAML section (`name:`) counts as
    an empty mapping; anything else that is not a mapping is a config error.
    """
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(value).__name__}.")
    return value


def number(config: dict, name: str, default, kind=float):
    """Reads a numeric option, accepting quoted numbers such as '12'."""
    value = config.get(name, default)
    if isinstance(value, bool):
        raise ValueError(f"Config option '{name}' must be a number, got {value!r}.")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config option '{name}' must be a number, got {value!r}.") from None


def flag(config: dict, name: str, default: bool) -> bool:
    value = config.get(name, default)
    if not isinstance(value, bool):
        raise ValueError(f"Config option '{name}' must be true or false, got {value!r}.")
    return value
