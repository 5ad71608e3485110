import pytest

from gradcheck.utils.common import get_config, load_config, log_message


def test_load_config_strips_comments(tmp_path):
  config_path = tmp_path / "config.jsonc"
  config_path.write_text(
    '{\n  // line comment\n  "logging": {/* block */ "levels": ["INFO"]}\n}\n'
  )
  assert load_config(config_path) == {"logging": {"levels": ["INFO"]}}


def test_packaged_config_has_defaults_per_dtype():
  config = get_config()
  for dtype_name in ("float32", "float64"):
    assert set(config["gradient_check"][dtype_name]) == {"eps", "atol", "rtol"}


def test_log_message_format_and_file(tmp_path, capsys):
  log_file = tmp_path / "console_log.txt"
  config = {"logging": {"levels": ["INFO"], "console_log_file": str(log_file)}}
  log_message("Checking inputs", "INFO", indent=1, config=config)
  printed = capsys.readouterr().out
  assert printed.startswith("  ○ [INFO] ")
  assert printed.rstrip().endswith("∘ Checking inputs")
  assert log_file.read_text() == printed


def test_log_message_skips_disabled_levels(capsys):
  log_message("hidden", "DEBUG", config={"logging": {"levels": ["ERROR"]}})
  assert capsys.readouterr().out == ""


def test_log_message_rejects_unknown_level():
  with pytest.raises(ValueError, match="Invalid log level"):
    log_message("oops", "WARN")
