"""
Runtime-editable reminder configuration.

Lives in a JSON file (CONFIG_FILE_PATH) so admins can change the message
template from the dashboard without a redeploy. The file is created with
defaults on first access.
"""

import json
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fee_reminder.config import settings
from fee_reminder.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MESSAGE_TEMPLATE = (
    "Dear {{name}},\n\n"
    "This is a reminder that your fee payment of {{amount}} is pending.\n\n"
    "Please make the payment as soon as possible to avoid any late fees.\n\n"
    "Regards,\n"
    "School Administration"
)


class ReminderConfig(BaseModel):
    """Shape of config.json (camelCase on disk)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    excel_file_path: str = Field("uploads/student_fees.xlsx", alias="excelFilePath")
    default_country_code: str = Field("+91", alias="defaultCountryCode")
    message_template: str = Field(DEFAULT_MESSAGE_TEMPLATE, alias="messageTemplate")


class ReminderConfigError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ReminderConfigStore:
    """Reads and writes config.json; writes are atomic replace-on-rename."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> ReminderConfig:
        with self._lock:
            if not self.path.exists():
                config = ReminderConfig()
                self._write(config)
                logger.info("Created default configuration file", path=str(self.path))
                return config

            try:
                return ReminderConfig.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error("Failed to read configuration file", path=str(self.path), error=str(e))
                raise ReminderConfigError(f"Invalid configuration file: {e}", operation="load") from e

    def get_message_template(self) -> str:
        return self.load().message_template

    def update_message_template(self, template: str) -> ReminderConfig:
        config = self.load().model_copy(update={"message_template": template})
        with self._lock:
            self._write(config)
        logger.info("Message template updated", template_length=len(template))
        return config

    def _write(self, config: ReminderConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(config.model_dump(by_alias=True), indent=2), encoding="utf-8")
        tmp_path.replace(self.path)


reminder_config_store = ReminderConfigStore(settings.CONFIG_FILE_PATH)
