import configparser
import os
from typing import Optional

CONFIG_DIR = os.path.join(os.getenv("HOME", os.path.expanduser("~")), ".remote_env")
CONFIG_FILE = os.path.join(CONFIG_DIR, "remote_env.cfg")

DEFAULT_SECTION = "remote_env"

# Fixed launch parameters of the ztunnel dev sandbox. The privileged flag is
# intentionally absent: it cannot be turned off from configuration.
DEFAULTS = {
    "image_tag": "ztunnel/remote-env:0.1",
    "container_name": "ztunnel-dev",
    "host_port": "2222",
    "container_port": "22",
    "bind_address": "127.0.0.1",
    "mount_target": "/home/user/ztunnel",
    "build_profile": "ztunnel",
    "docker_binary": "docker",
}


def ensure_config_exists():
    """
    Ensure that the .remote_env dir and remote_env.cfg exist.
    Returns configparser.ConfigParser for reading.
    """
    if not os.path.exists(CONFIG_DIR):
        os.makedirs(CONFIG_DIR, exist_ok=True)
    exists = os.path.isfile(CONFIG_FILE)
    config = configparser.ConfigParser()
    if exists:
        config.read(CONFIG_FILE)
    if DEFAULT_SECTION not in config:
        config[DEFAULT_SECTION] = {}
    if not exists:
        with open(CONFIG_FILE, "w") as f:
            config.write(f)
    return config


def get_value(key: str):
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    val = config.get(DEFAULT_SECTION, key, fallback=None)
    return val


def _get_with_default(key: str) -> str:
    val = get_value(key)
    return val if val else DEFAULTS[key]


def _get_port(key: str) -> int:
    val = get_value(key)
    if val is None:
        return int(DEFAULTS[key])
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Config value '{key}' must be a port number, got {val!r}") from None


def get_image_tag() -> str:
    return _get_with_default("image_tag")


def get_container_name() -> str:
    return _get_with_default("container_name")


def get_host_port() -> int:
    """Host port published for the in-container remote shell."""
    return _get_port("host_port")


def get_container_port() -> int:
    return _get_port("container_port")


def get_bind_address() -> str:
    return _get_with_default("bind_address")


def get_mount_target() -> str:
    return _get_with_default("mount_target")


def get_build_profile() -> str:
    return _get_with_default("build_profile")


def get_docker_binary() -> str:
    return _get_with_default("docker_binary")


def get_base_image() -> Optional[str]:
    """Base image override for the build profile, None to use the profile's."""
    return get_value("base_image") or None


def get_build_timeout() -> Optional[int]:
    """
    Get the image build timeout in seconds.
    Returns None (no limit) when unset or invalid.
    """
    val = get_value("build_timeout")
    if val is None:
        return None
    try:
        timeout = int(val)
    except ValueError:
        return None
    return timeout if timeout > 0 else None


# --- CONFIG SETTER STARTS HERE ---
def get_config_keys():
    """
    Returns the list of all config keys currently in remote_env.cfg,
    plus the keys that have defaults.
    """
    default_keys = list(DEFAULTS) + ["base_image", "build_timeout"]

    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    keys = set(config[DEFAULT_SECTION].keys()) if DEFAULT_SECTION in config else set()
    keys.update(default_keys)
    return sorted(keys)


def set_config_value(key: str, value: str):
    """
    Sets a config value in the persistent config file.
    """
    if key == "privileged":
        raise ValueError("The privileged flag is not configurable")
    ensure_config_exists()
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    if DEFAULT_SECTION not in config:
        config[DEFAULT_SECTION] = {}
    config[DEFAULT_SECTION][key] = value
    with open(CONFIG_FILE, "w") as f:
        config.write(f)
