"""
Configuration for the key lookup: built-in defaults, then a config file
(YAML or nslcd.conf), then command line overrides.
"""

import collections
import os
import urllib.parse

from ldap_pubkey.common import ConfigError, UsageError, get_config

DEFAULT_CONFIG_FILES = ["/etc/ssh-ldap-pubkey.yaml", "/etc/nslcd.conf"]

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 389
DEFAULT_TLS_PORT = 636
DEFAULT_BASE = ""
DEFAULT_FILTER = "(&(objectClass=posixAccount)(uid=%s))"

LdapEnv = collections.namedtuple(
    "LdapEnv", ["host", "port", "base", "filter", "tls", "skip", "timeout", "uid"]
)

FILE_KEYS = ["host", "port", "base", "filter", "tls", "skip", "timeout"]


def default_env():
    return LdapEnv(
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        base=DEFAULT_BASE,
        filter=DEFAULT_FILTER,
        tls=False,
        skip=False,
        timeout=None,
        uid="",
    )


def parse_uri(value):
    """
    Pick the first ldap:// or ldaps:// URI from an nslcd "uri" value
    """
    for uri in value.split():
        parts = urllib.parse.urlsplit(uri)
        if parts.scheme not in ("ldap", "ldaps") or not parts.hostname:
            continue

        settings = {"host": parts.hostname}
        if parts.scheme == "ldaps":
            settings["tls"] = True
            settings["port"] = DEFAULT_TLS_PORT
        try:
            if parts.port:
                settings["port"] = parts.port
        except ValueError as e:
            raise ConfigError(f"Invalid port in uri {uri}: {e}") from e
        return settings
    return {}


def parse_nslcd_conf(filepath):
    """
    Read the subset of nslcd.conf(5) needed to find users in the directory
    """
    try:
        with open(filepath) as fh:
            lines = fh.readlines()
    except OSError as e:
        raise ConfigError(f"Failed loading config {filepath}: {e}") from e

    settings = {}
    passwd_base = None
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        try:
            keyword, value = line.split(None, 1)
        except ValueError:
            continue
        keyword = keyword.lower()
        value = value.strip()

        if keyword == "uri" and "host" not in settings:
            settings.update(parse_uri(value))
        elif keyword == "base":
            words = value.split(None, 1)
            if len(words) == 2 and words[0] == "passwd":
                passwd_base = words[1]
            elif "=" in words[0] and "base" not in settings:
                settings["base"] = value
        elif keyword == "ssl":
            if value.lower() == "on":
                settings["tls"] = True
        elif keyword == "tls_reqcert":
            if value.lower() in ("never", "allow"):
                settings["skip"] = True
        elif keyword == "filter":
            words = value.split(None, 1)
            if len(words) == 2 and words[0] == "passwd":
                user_filter = words[1].strip()
                if not user_filter.startswith("("):
                    user_filter = f"({user_filter})"
                settings["filter"] = f"(&{user_filter}(uid=%s))"
        elif keyword == "bind_timelimit":
            settings["timeout"] = value

    if passwd_base:
        settings["base"] = passwd_base
    return settings


def read_config_file(filepath):
    if filepath.endswith((".yaml", ".yml")):
        config = get_config(filepath)
        return {key: config[key] for key in FILE_KEYS if config.get(key) is not None}
    return parse_nslcd_conf(filepath)


def to_bool(name, value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("yes", "true", "on", "1"):
        return True
    if isinstance(value, str) and value.lower() in ("no", "false", "off", "0"):
        return False
    raise ConfigError(f"Invalid value for {name}: {value!r}")


def to_port(value):
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {value!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"Invalid port: {port}")
    return port


def load_env(filepath=None):
    """
    Build the base configuration from the built-in defaults and a config file.

    An explicitly given file must be readable; otherwise the first readable
    file of DEFAULT_CONFIG_FILES is used, and having none at all is fine.
    """
    env = default_env()

    if filepath is None:
        for candidate in DEFAULT_CONFIG_FILES:
            # Unreadable system files count as absent
            if os.path.isfile(candidate) and os.access(candidate, os.R_OK):
                filepath = candidate
                break
        else:
            return env

    settings = read_config_file(filepath)

    if "port" in settings:
        settings["port"] = to_port(settings["port"])
    for key in ("tls", "skip"):
        if key in settings:
            settings[key] = to_bool(key, settings[key])
    if settings.get("timeout") is not None:
        try:
            settings["timeout"] = float(settings["timeout"])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid timeout: {settings['timeout']!r}")
    for key in ("host", "base", "filter"):
        if key in settings:
            settings[key] = str(settings[key])
    if "filter" in settings:
        check_filter(settings["filter"], ConfigError)

    return env._replace(**settings)


def check_filter(search_filter, error=UsageError):
    if search_filter.count("%s") != 1:
        raise error(f"Search filter must contain exactly one %s: {search_filter}")
    try:
        search_filter % "user"
    except (TypeError, ValueError) as e:
        raise error(f"Invalid search filter {search_filter}: {e}")


def resolve_env(env, args, host=None, port=None, base=None, search_filter=None, tls=None, skip=None):
    """
    Apply command line overrides to env and bind the username
    """
    overrides = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = to_port(port)
    if base is not None:
        overrides["base"] = base
    if search_filter is not None:
        check_filter(search_filter)
        overrides["filter"] = search_filter
    if tls is not None:
        overrides["tls"] = tls
    if skip is not None:
        overrides["skip"] = skip
    env = env._replace(**overrides)

    if len(args) != 1 or not args[0]:
        raise UsageError("Specify exactly one username")

    return env._replace(uid=args[0])
