#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

The global DOCAT configuration: a small JSON key/value file holding the OpenAI API key and the model name.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional
import json
import os


API_KEY = "openai_api_key"
MODEL = "model"
DEFAULT_MODEL = "gpt-4"


def default_config_path() -> Path:
    """
    Return the location of the global configuration file.

    `$DOCAT_CONFIG_DIR/config.json` if that variable is set, `~/.config/docat/config.json` otherwise.
    """

    base = os.environ.get("DOCAT_CONFIG_DIR")
    if base:
        return Path(base).expanduser() / "config.json"
    return Path.home() / ".config" / "docat" / "config.json"


class DocConfig:
    """
    File-backed configuration store.

    Values are strings. A key that was never set reads as `None`, which is how callers find out that, for example, no
    API key has been configured yet. Every `set` rewrites the file atomically.

    Parameters:
    - `path`: The configuration file (default: `default_config_path()`).
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else default_config_path()
        self._values = self._load()

    def get(self, key: str) -> Optional[str]:
        """Return the value stored for `key`, or `None` if it is missing or empty."""

        value = self._values.get(key)
        return value if value else None

    def set(self, key: str, value: str) -> None:
        """Store `value` under `key` and persist the whole configuration."""

        self._values[key] = value
        data = json.dumps(self._values, indent=2, sort_keys=True) + "\n"
        self._atomic_write_bytes(self.path, data.encode("utf-8"))

    @property
    def api_key(self) -> Optional[str]:
        return self.get(API_KEY)

    @api_key.setter
    def api_key(self, value: str) -> None:
        self.set(API_KEY, value)

    @property
    def model(self) -> str:
        return self.get(MODEL) or DEFAULT_MODEL

    @model.setter
    def model(self, value: str) -> None:
        self.set(MODEL, value)

    def _load(self) -> Dict[str, str]:
        """
        Load the configuration from disc.

        A missing or corrupt file gives an empty configuration rather than an error; non-string values are ignored.
        """

        try:
            obj = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        if not isinstance(obj, dict):
            return {}
        return {k: v for k, v in obj.items() if isinstance(v, str)}

    @staticmethod
    def _atomic_write_bytes(path: Path, data: bytes) -> None:
        """
        Write `data` to a temporary file beside `path`, then move it into place.
        """

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("wb") as f:
            f.write(data)
        tmp.replace(path)
