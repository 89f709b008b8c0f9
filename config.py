import os
import yaml
import keyring

from settings_schema import AppSettings, validate_settings

APP_VERSION = "1.0.0"

# Environment variables that take precedence over the YAML file.
ENV_OVERRIDES = {
    "FITTRACK_DB_PATH": "db_path",
    "FITTRACK_TIMEZONE": "timezone",
    "FITTRACK_LOG_FORMAT": "log_format",
    "FITTRACK_LOG_LEVEL": "log_level",
    "FIREBASE_CREDENTIALS": "firebase_credentials",
    "FIREBASE_PROJECT_ID": "firebase_project_id",
}


class YamlConfig:
    """Load and save settings to a YAML file, keeping secrets in the keyring on request."""

    SENSITIVE_KEYS = {
        "firebase_credentials",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "fittrack"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} must contain a mapping")
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
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)


def load_app_settings(path: str = "settings.yaml") -> AppSettings:
    """Read ``path``, apply environment overrides and validate the result."""
    data = YamlConfig(path).load()
    for env, key in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            data[key] = value
    return validate_settings(data)
