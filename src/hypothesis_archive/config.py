"""Configuration for the Hypothesis archive.

A single frozen ``Config`` value is loaded once and handed to each component's
constructor. The TOML file looks like::

    [storage]
    storage_dir = "~/.local/share/hypothesis-archive"
    output_dir = "~/notes/hypothesis"

    [templates]
    hierarchy = ["{{ domain }}", "{{ title }}"]
    sort = "{{ created }}"

    [remote]
    page_size = 200

    [retry]
    attempts = 5
"""

import dataclasses
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hypothesis_archive.errors import ConfigError

# API token location. Environment variable wins, then the first file found.
API_TOKEN_ENV = "HYPOTHESIS_API_TOKEN"
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/hypothesis-archive/token.txt").expanduser(),
    Path("~/.config/secret/hypothesis-token.txt").expanduser(),
]

CONFIG_ENV = "HYPOTHESIS_ARCHIVE_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/hypothesis-archive/config.toml").expanduser()

DEFAULT_STORAGE_DIR = Path("~/.local/share/hypothesis-archive").expanduser()
DEFAULT_OUTPUT_DIR = DEFAULT_STORAGE_DIR / "kb"

DEFAULT_API_URL = "https://api.hypothes.is/api"

# Shortest allowed component bound: room for a prefix plus the hash suffix.
MIN_COMPONENT_LENGTH = 16

DEFAULT_ANNOTATION_TEMPLATE = """\
### [{{ title or uri }}]({{ incontext }})

{% if quote %}> {{ quote | replace("\\n", "\\n> ") }}

{% endif %}{% if text %}{{ text }}

{% endif %}{% if tags %}Tags: {{ tags | join(", ") }}

{% endif %}*{{ created | date }}*

"""

DEFAULT_PAGE_TEMPLATE = """\
# {{ title }}

{{ annotations }}"""

DEFAULT_INDEX_TEMPLATE = """\
# {{ title }}

{% for child in children %}- [{{ child.title }}]({{ child.link }}) ({{ child.count }})
{% endfor %}"""


@dataclass(frozen=True)
class Config:
    """Everything the sync, push and build pipelines need to know."""

    storage_dir: Path = DEFAULT_STORAGE_DIR
    output_dir: Path = DEFAULT_OUTPUT_DIR

    hierarchy: tuple[str, ...] = ("{{ domain }}", "{{ title }}")
    sort: str = "{{ created }}"
    annotation_template: str = DEFAULT_ANNOTATION_TEMPLATE
    page_template: str = DEFAULT_PAGE_TEMPLATE
    index_template: str = DEFAULT_INDEX_TEMPLATE
    file_extension: str = ".md"
    max_component_length: int = 80

    api_url: str = DEFAULT_API_URL
    page_size: int = 200
    request_timeout: float = 30.0

    retry_attempts: int = 5
    retry_base_delay: float = 0.5
    retry_factor: float = 2.0
    retry_max_delay: float = 30.0

    @property
    def db_path(self) -> Path:
        return self.storage_dir / "annotations.db"

    def __post_init__(self) -> None:
        if self.max_component_length < MIN_COMPONENT_LENGTH:
            msg = (
                f"max_component_length must be at least {MIN_COMPONENT_LENGTH}, "
                f"got {self.max_component_length}"
            )
            raise ConfigError(msg)
        if self.page_size < 1:
            msg = f"page_size must be positive, got {self.page_size}"
            raise ConfigError(msg)
        if self.retry_attempts < 1:
            msg = f"retry attempts must be at least 1, got {self.retry_attempts}"
            raise ConfigError(msg)
        if not self.file_extension.startswith("."):
            msg = f"file_extension must start with '.', got {self.file_extension!r}"
            raise ConfigError(msg)


# TOML section -> {toml key: Config field}
_SECTIONS: dict[str, dict[str, str]] = {
    "storage": {
        "storage_dir": "storage_dir",
        "output_dir": "output_dir",
    },
    "templates": {
        "hierarchy": "hierarchy",
        "sort": "sort",
        "annotation": "annotation_template",
        "page": "page_template",
        "index": "index_template",
        "file_extension": "file_extension",
        "max_component_length": "max_component_length",
    },
    "remote": {
        "api_url": "api_url",
        "page_size": "page_size",
        "request_timeout": "request_timeout",
    },
    "retry": {
        "attempts": "retry_attempts",
        "base_delay": "retry_base_delay",
        "factor": "retry_factor",
        "max_delay": "retry_max_delay",
    },
}


def resolve_config_path() -> Path:
    """Return the config file location: $HYPOTHESIS_ARCHIVE_CONFIG or the default."""
    env = os.environ.get(CONFIG_ENV)
    return Path(env).expanduser() if env else DEFAULT_CONFIG_PATH


def config_from_dict(data: dict[str, Any]) -> Config:
    """Build a Config from parsed TOML data, rejecting unknown keys."""
    kwargs: dict[str, Any] = {}
    for section, values in data.items():
        mapping = _SECTIONS.get(section)
        if mapping is None or not isinstance(values, dict):
            msg = f"unknown config section: [{section}]"
            raise ConfigError(msg)
        for key, value in values.items():
            if key not in mapping:
                msg = f"unknown config key: {section}.{key}"
                raise ConfigError(msg)
            kwargs[mapping[key]] = value

    for name in ("storage_dir", "output_dir"):
        if name in kwargs:
            kwargs[name] = Path(kwargs[name]).expanduser()
    if "hierarchy" in kwargs:
        hierarchy = kwargs["hierarchy"]
        if not isinstance(hierarchy, list) or not all(isinstance(h, str) for h in hierarchy):
            msg = "templates.hierarchy must be a list of strings"
            raise ConfigError(msg)
        kwargs["hierarchy"] = tuple(hierarchy)

    try:
        return Config(**kwargs)
    except TypeError as e:
        raise ConfigError(str(e)) from e


def load_config(path: Path | None = None) -> Config:
    """Load configuration from TOML. A missing file yields the defaults."""
    config_path = path or resolve_config_path()
    if not config_path.exists():
        return Config()
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"invalid TOML in {config_path}: {e}"
        raise ConfigError(msg) from e
    return config_from_dict(data)


def with_overrides(config: Config, **changes: Any) -> Config:
    """Return a copy of ``config`` with non-None keyword arguments applied."""
    return dataclasses.replace(config, **{k: v for k, v in changes.items() if v is not None})
