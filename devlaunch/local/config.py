import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

import devlaunch.settings as default_settings

log = logging.getLogger(__name__)

_TRUE_WORDS = ('true', '1', 't', 'yes', 'y', 'on')


def _coerce(current: Any, raw: Any) -> Any:
    """Converts a console value to the type of the setting's current value."""
    if isinstance(current, bool):
        return str(raw).strip().lower() in _TRUE_WORDS
    if current is None or isinstance(raw, type(current)):
        return raw
    return type(current)(raw)


class MergedSettings:
    """
    The effective devlaunch settings.

    Values come from `devlaunch/settings.py` (itself reading `.env` and the
    process environment), then from the project's `.devlaunch/overrides.json`
    for the keys listed in `MODIFIABLE_SETTINGS`. The console's `config set`
    writes that file.
    """

    def __init__(self, overrides_path: Path = default_settings.OVERRIDES_JSON_PATH) -> None:
        for name in dir(default_settings):
            if name.isupper():
                setattr(self, name, getattr(default_settings, name))
        self.OVERRIDES_JSON_PATH: Path = overrides_path
        self._apply_overrides(self._read_overrides())

    def _read_overrides(self) -> Dict[str, Any]:
        path = self.OVERRIDES_JSON_PATH
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.error(f"Ignoring unreadable overrides file '{path}': {e}")
            return {}
        if not isinstance(data, dict):
            log.error(f"Ignoring overrides file '{path}': expected a JSON object.")
            return {}
        return data

    def _apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Applies whitelisted overrides; anything else is reported and skipped."""
        for key, value in overrides.items():
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Setting '{key}' cannot be overridden from {self.OVERRIDES_JSON_PATH.name}. Ignoring.")
                continue
            setattr(self, key, value)
            log.debug(f"Override applied: {key} = {value!r}")

    def modifiable_values(self) -> Dict[str, Any]:
        """Returns the current value of every modifiable setting."""
        return {key: getattr(self, key) for key in sorted(self.MODIFIABLE_SETTINGS)}

    def update_setting(self, key: str, value: Any) -> Tuple[bool, str]:
        """
        Changes a modifiable setting and persists every modifiable value.

        :param key: The setting name (case-insensitive).
        :param value: The new value, usually a string typed at the console.
        :return: A tuple of (success, message).
        """
        key = key.upper()
        if key not in self.MODIFIABLE_SETTINGS:
            return False, f"Setting '{key}' is not modifiable."

        try:
            new_value = _coerce(getattr(self, key, None), value)
        except (TypeError, ValueError) as e:
            message = f"Could not convert value '{value}' for key '{key}'. Error: {e}"
            log.error(message)
            return False, message

        setattr(self, key, new_value)
        self.save_overrides(self.modifiable_values())
        return True, f"Setting '{key}' updated to '{new_value}'. Restart the apps to apply it."

    def save_overrides(self, values: Dict[str, Any]) -> None:
        """
        Writes the modifiable subset of `values` to the overrides file.

        :param values: Settings to persist; keys outside MODIFIABLE_SETTINGS are dropped.
        """
        to_save = {k: v for k, v in values.items() if k in self.MODIFIABLE_SETTINGS}
        if not to_save:
            return
        path = self.OVERRIDES_JSON_PATH
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(to_save, indent=4), encoding="utf-8")
        except OSError as e:
            log.error(f"Could not save overrides to '{path}': {e}")
            return
        log.info(f"Saved {len(to_save)} setting(s) to {path}")


# Imported everywhere as `config`
effective_settings = MergedSettings()
