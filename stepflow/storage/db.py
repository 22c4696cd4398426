import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from stepflow.core.errors import ValidationError
from stepflow.core.models import ScriptDocument

LOGGER = logging.getLogger(__name__)

HOME_ENV = "STEPFLOW_HOME"
DEFAULT_HOME = "stepflow-data"

EXECUTION_DEFAULTS: Dict[str, Any] = {
    "default_timeout_ms": 30000,
    "max_while_iterations": 100,
    "exhausted_retry_policy": "stop",
    "headless": False,
}

CAMOUFOX_DEFAULTS: Dict[str, Any] = {
    "humanize": True,
    "locale": "",
    "window_width": 0,
    "window_height": 0,
    "enable_cache": True,
    "block_images": False,
}

SAMPLE_SCRIPT: Dict[str, Any] = {
    "id": "demo",
    "name": "Demo script",
    "description": "Open example.com and read its heading",
    "category": "samples",
    "tags": ["demo"],
    "variables": {"site": "https://example.com"},
    "steps": [
        {
            "id": "step_demo_navigate",
            "type": "navigate",
            "name": "Navigate 1",
            "order": 0,
            "config": {"url": "{{site}}", "waitUntil": "load"},
        },
        {
            "id": "step_demo_wait",
            "type": "wait",
            "name": "Wait 2",
            "order": 1,
            "config": {"type": "selector", "value": "h1"},
        },
        {
            "id": "step_demo_extract",
            "type": "extract",
            "name": "Extract 3",
            "order": 2,
            "config": {"selector": "h1", "attribute": "textContent", "variable": "heading"},
        },
    ],
}


# Data paths are resolved on every call so STEPFLOW_HOME can change between runs
def data_root() -> Path:
    return Path(os.environ.get(HOME_ENV) or DEFAULT_HOME).expanduser().resolve()


def settings_file() -> Path:
    return data_root() / "settings.json"


def scripts_dir() -> Path:
    return data_root() / "scripts"


def profiles_dir() -> Path:
    return data_root() / "profiles"


def outputs_dir() -> Path:
    return data_root() / "outputs"


def _safe_name(name: str, fallback: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]", "_", (name or "").strip() or fallback)
    return cleaned[:120]


def profile_dir_for_name(name: str) -> Path:
    return profiles_dir() / _safe_name(name, "profile")


def _script_path(name: str) -> Path:
    return scripts_dir() / f"{_safe_name(name, 'script')}.json"


def _script_file_for_name(name: str) -> Path:
    """Return the file path for a script name, falling back to scanning all files."""
    direct = _script_path(name)
    if direct.exists():
        return direct
    folder = scripts_dir()
    if not folder.exists():
        return direct
    for path in folder.glob("*.json"):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue
        if isinstance(data, dict) and str(data.get("name") or path.stem) == name:
            return path
    return direct


def _ensure_storage() -> None:
    for folder in (scripts_dir(), profiles_dir(), outputs_dir()):
        folder.mkdir(parents=True, exist_ok=True)
    if not settings_file().exists():
        _atomic_write_text(settings_file(), "{}", encoding="utf-8")


def init_db(*, seed_sample: bool = True) -> None:
    """
    Initialize JSON storage.
    """
    _ensure_storage()

    if seed_sample and not any(scripts_dir().glob("*.json")):
        sample_path = scripts_dir() / "demo_script.json"
        _atomic_write_text(sample_path, json.dumps(SAMPLE_SCRIPT, ensure_ascii=False, indent=2))
        LOGGER.info("Seeded sample script at %s", sample_path)


def _load_settings() -> Dict[str, Any]:
    path = settings_file()
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        LOGGER.exception("Failed to load settings.json")
        return {}


def _save_settings(settings: Dict[str, Any]) -> None:
    payload = json.dumps(settings, ensure_ascii=False, indent=2)
    _atomic_write_text(settings_file(), payload, encoding="utf-8")


def _atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """
    Write text to a temp file and atomically replace the target.
    This avoids partially-written JSON on crashes or concurrent writes.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=path.name, dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def db_get_setting(key: str) -> Optional[Any]:
    return _load_settings().get(key)


def db_set_setting(key: str, value: Any) -> None:
    settings = _load_settings()
    settings[key] = value
    _save_settings(settings)


def _merged_defaults(key: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    combined = dict(defaults)
    stored = db_get_setting(key)
    if isinstance(stored, str):
        try:
            stored = json.loads(stored)
        except ValueError:
            stored = None
    if isinstance(stored, dict):
        combined.update({k: stored[k] for k in defaults if k in stored})
    return combined


def _store_defaults(key: str, defaults: Dict[str, Any], values: Dict[str, Any]) -> None:
    merged = _merged_defaults(key, defaults)
    for name in defaults:
        if name in values:
            merged[name] = values[name]
    db_set_setting(key, merged)


def db_get_execution_defaults() -> Dict[str, Any]:
    return _merged_defaults("execution_defaults", EXECUTION_DEFAULTS)


def db_set_execution_defaults(values: Dict[str, Any]) -> None:
    _store_defaults("execution_defaults", EXECUTION_DEFAULTS, values)


def db_get_camoufox_defaults() -> Dict[str, Any]:
    return _merged_defaults("camoufox_defaults", CAMOUFOX_DEFAULTS)


def db_set_camoufox_defaults(values: Dict[str, Any]) -> None:
    _store_defaults("camoufox_defaults", CAMOUFOX_DEFAULTS, values)


def load_script_file(path: Path) -> ScriptDocument:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ValidationError(f"{path}: not valid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: a script document must be a JSON object")
    return ScriptDocument.from_dict(data)


def db_get_scripts() -> List[ScriptDocument]:
    folder = scripts_dir()
    if not folder.exists():
        return []
    scripts: List[ScriptDocument] = []
    for path in sorted(folder.glob("*.json")):
        try:
            scripts.append(load_script_file(path))
        except (OSError, ValidationError) as exc:
            LOGGER.warning("Skipping unreadable script %s: %s", path.name, exc)
    scripts.sort(key=lambda s: s.name)
    return scripts


def db_get_script(name: str) -> Optional[ScriptDocument]:
    path = _script_file_for_name(name)
    if not path.exists():
        return None
    return load_script_file(path)


def db_get_script_path(name: str) -> Path:
    """
    Return the JSON file path for a script name, scanning existing script files
    when necessary (e.g. if the file name differs from the stored script name).
    """
    return _script_file_for_name(name)


def db_save_script(document: ScriptDocument) -> Path:
    existing = _script_file_for_name(document.name)
    path = existing if existing.exists() else _script_path(document.name)
    payload = json.dumps(document.to_dict(), ensure_ascii=False, indent=2)
    _atomic_write_text(path, payload)
    return path


def db_delete_script(name: str) -> bool:
    path = _script_file_for_name(name)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def save_script_file(path: Path, document: ScriptDocument) -> None:
    _atomic_write_text(Path(path), json.dumps(document.to_dict(), ensure_ascii=False, indent=2))
