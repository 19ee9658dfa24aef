import os
import yaml
import keyring

from settings_schema import SettingsSchema, load_settings, validate_settings

APP_VERSION = "1.0.0"


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "api_key",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "workout-insights"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if out.get(key) is None:
                    out.pop(key, None)
                else:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def settings(self) -> SettingsSchema:
        return load_settings(self.load())

    def update(self, **values) -> dict:
        """Merge ``values`` into the stored settings and return the result.

        Invalid values raise ``ValueError`` and leave the file untouched.
        """
        data = self.load()
        data.update(values)
        validate_settings(data)
        self.save(data)
        return data
