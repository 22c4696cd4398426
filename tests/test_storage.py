import json

from stepflow.core.models import ScriptDocument
from stepflow.storage import db


def test_init_seeds_the_sample_once(_isolated_home):
    db.init_db()
    assert db.data_root() == _isolated_home.resolve()
    scripts = db.db_get_scripts()
    assert [s.id for s in scripts] == ["demo"]
    assert db.settings_file().exists()
    assert db.profiles_dir().is_dir()

    db.db_delete_script("Demo script")
    db.init_db(seed_sample=False)
    assert db.db_get_scripts() == []


def test_save_get_and_delete_scripts():
    db.init_db(seed_sample=False)
    document = ScriptDocument.from_dict(
        {
            "id": "login",
            "name": "Log in",
            "tags": ["auth"],
            "steps": [{"id": "n", "type": "navigate", "name": "Open", "order": 0, "config": {"url": "https://a.test"}}],
        }
    )
    path = db.db_save_script(document)
    assert path.name == "Log_in.json"
    assert db.db_get_script("Log in") == document
    assert db.db_get_script_path("Log in") == path

    document.description = "updated"
    assert db.db_save_script(document) == path
    assert db.db_get_script("Log in").description == "updated"

    assert db.db_delete_script("Log in") is True
    assert db.db_delete_script("Log in") is False
    assert db.db_get_script("Log in") is None


def test_scripts_are_found_by_stored_name():
    db.init_db(seed_sample=False)
    path = db.scripts_dir() / "renamed.json"
    path.write_text(json.dumps({"id": "x", "name": "Original", "steps": []}), encoding="utf-8")
    assert db.db_get_script("Original").id == "x"


def test_unreadable_scripts_are_skipped(caplog):
    db.init_db(seed_sample=False)
    (db.scripts_dir() / "broken.json").write_text("{not json", encoding="utf-8")
    (db.scripts_dir() / "list.json").write_text("[]", encoding="utf-8")
    (db.scripts_dir() / "ok.json").write_text(json.dumps({"id": "ok", "name": "Ok", "steps": []}), encoding="utf-8")
    assert [s.name for s in db.db_get_scripts()] == ["Ok"]
    assert "broken.json" in caplog.text


def test_settings_round_trip():
    db.init_db(seed_sample=False)
    assert db.db_get_setting("theme") is None
    db.db_set_setting("theme", {"dark": True})
    assert db.db_get_setting("theme") == {"dark": True}


def test_execution_defaults_merge_known_keys():
    db.init_db(seed_sample=False)
    assert db.db_get_execution_defaults() == db.EXECUTION_DEFAULTS
    db.db_set_execution_defaults({"default_timeout_ms": 5000, "unknown": 1})
    merged = db.db_get_execution_defaults()
    assert merged["default_timeout_ms"] == 5000
    assert merged["max_while_iterations"] == 100
    assert "unknown" not in merged


def test_camoufox_defaults_accept_json_strings():
    db.init_db(seed_sample=False)
    db.db_set_setting("camoufox_defaults", json.dumps({"locale": "de-DE"}))
    assert db.db_get_camoufox_defaults()["locale"] == "de-DE"


def test_profile_dirs_are_sanitized():
    assert db.profile_dir_for_name("../work profile").name == ".._work_profile"
    assert db.profile_dir_for_name("").name == "profile"
    assert db.profile_dir_for_name("main").parent == db.profiles_dir()
