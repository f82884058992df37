import click
import sys
import syslog
import yaml


class UsageError(click.UsageError):
    def __init__(self, message, ctx=None):
        if ctx is None:
            ctx = click.get_current_context(silent=True)
        super().__init__(message, ctx)


class ConfigError(Exception):
    pass


class LdapConnectionError(ConnectionError):
    pass


class KeyLookupError(LookupError):
    pass


def log_error(message):
    syslog.syslog(syslog.LOG_ERR | syslog.LOG_AUTHPRIV, message)
    sys.stderr.write(f"{message}\n")


def log_info(message):
    syslog.syslog(syslog.LOG_INFO | syslog.LOG_AUTHPRIV, message)


def get_config(filepath):
    try:
        with open(filepath) as fh:
            config = yaml.safe_load(fh)
    except Exception as e:
        raise ConfigError(f"Failed loading config {filepath}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Failed loading config {filepath}: not a mapping")
    return config
