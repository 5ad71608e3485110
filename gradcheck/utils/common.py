import json
import os
import re
import time
from functools import lru_cache
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config.jsonc"
CONFIG_ENVIRONMENT_VARIABLE = "GRADCHECK_CONFIG"
VALID_LOG_LEVELS = {"INFO", "ERROR", "DEBUG"}

_INITIAL_START_TIME = time.time()


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> dict:
  raw_text = Path(config_path).read_text()
  cleaned_text = re.sub(r"//.*?\n|/\*.*?\*/", "", raw_text, flags=re.S)
  return json.loads(cleaned_text)


@lru_cache(maxsize=None)
def get_config() -> dict:
  return load_config(os.environ.get(CONFIG_ENVIRONMENT_VARIABLE, DEFAULT_CONFIG_PATH))


def log_message(
  message: str, level: str = "INFO", indent: int = 0, config: dict | None = None
) -> None:
  if level not in VALID_LOG_LEVELS:
    raise ValueError(f"Invalid log level: '{level}'. Must be one of {VALID_LOG_LEVELS}")
  logging_config = (config or get_config()).get("logging", {})
  if level not in logging_config.get("levels", ["INFO", "ERROR"]):
    return
  elapsed_time_seconds = time.time() - _INITIAL_START_TIME
  time_string = time.strftime("%H:%M:%S", time.gmtime(elapsed_time_seconds))
  indentation = " " * (indent * 2)
  formatted_log_message = f"{indentation}○ [{level}] {time_string} ∘ {message}"
  print(formatted_log_message)
  console_log_file = logging_config.get("console_log_file")
  if console_log_file:
    with open(console_log_file, "a") as file_handle:
      file_handle.write(formatted_log_message + "\n")
