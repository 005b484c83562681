import pytest

from newscreens.models.folderModel import Folder
from newscreens.services import catalog
from newscreens.services.imageAnalysis import DEFAULT_INSTRUCTION, DEFAULT_MODEL
from newscreens.utils.errors import NotFoundError, ValidationError


def selected_ids(db, owner_id=None):
    return [f.id for f in catalog.list_folders(db, owner_id=owner_id) if f.is_selected]


def test_first_folder_is_selected(db):
    first = catalog.create_folder(db, "Invoices")
    second = catalog.create_folder(db, "Receipts", name="My receipts")

    assert first.is_selected is True
    assert second.is_selected is False
    assert second.name == "My receipts"
    assert first.name == "Invoices"


def test_duplicate_folder_path_rejected(db):
    catalog.create_folder(db, "Invoices")
    with pytest.raises(ValidationError):
        catalog.create_folder(db, "Invoices")


@pytest.mark.parametrize("path", ["", "   ", "..", "a/b", None])
def test_invalid_folder_paths_rejected(db, path):
    with pytest.raises(ValidationError):
        catalog.create_folder(db, path)


def test_absolute_folder_path_reduced_to_name(db):
    folder = catalog.create_folder(db, "C:\\Users\\me\\SE Ranking")
    assert folder.path == "SE Ranking"


def test_select_folder_is_mutually_exclusive(db):
    folders = [catalog.create_folder(db, name) for name in ("a", "b", "c")]

    for folder in folders + [folders[0]]:
        catalog.select_folder(db, folder.id)
        assert selected_ids(db) == [folder.id]

    catalog.select_root(db)
    assert selected_ids(db) == []
    assert catalog.get_selected_folder(db) is None


def test_selection_is_per_owner(db):
    mine = catalog.create_folder(db, "shared-name", owner_id="alice")
    theirs = catalog.create_folder(db, "shared-name", owner_id="bob")
    other = catalog.create_folder(db, "other", owner_id="alice")

    catalog.select_folder(db, other.id, owner_id="alice")

    assert selected_ids(db, "alice") == [other.id]
    assert selected_ids(db, "bob") == [theirs.id]
    with pytest.raises(NotFoundError):
        catalog.select_folder(db, mine.id, owner_id="bob")


def test_delete_folder_keeps_screenshots(db):
    folder = catalog.create_folder(db, "Invoices")
    shots = [
        catalog.create_screenshot(db, f"s{i}.png", f"Invoices/s{i}.png", folder_id=folder.id)
        for i in range(3)
    ]

    moved = catalog.delete_folder(db, folder.id)

    assert moved == 3
    assert db.query(Folder).filter(Folder.id == folder.id).first() is None
    for shot in shots:
        fetched = catalog.get_screenshot(db, shot.id)
        assert fetched.folder_id is None


def test_delete_selected_folder_selects_another(db):
    a = catalog.create_folder(db, "a")
    b = catalog.create_folder(db, "b")
    assert a.is_selected

    catalog.delete_folder(db, a.id)
    assert selected_ids(db) == [b.id]

    catalog.delete_folder(db, b.id)
    assert selected_ids(db) == []


def test_delete_unselected_folder_keeps_selection(db):
    a = catalog.create_folder(db, "a")
    b = catalog.create_folder(db, "b")
    catalog.delete_folder(db, b.id)
    assert selected_ids(db) == [a.id]


def test_search_is_case_insensitive_across_fields(db):
    catalog.create_screenshot(db, "Quarterly_Report.png", "q.png", description="Revenue CHART")
    catalog.create_screenshot(db, "b.png", "b.png", ai_suggested_name="Login_Form")
    catalog.create_screenshot(db, "c.png", "c.png", keywords=["Kubernetes", "pods"])
    catalog.create_screenshot(db, "d.png", "d.png", description="100% done")

    def found(q):
        return sorted(s.filename for s in catalog.list_screenshots(db, query=q))

    assert found("quarterly") == ["Quarterly_Report.png"]
    assert found("revenue chart") == ["Quarterly_Report.png"]
    assert found("LOGIN") == ["b.png"]
    assert found("kubernetes") == ["c.png"]
    assert found("%") == ["d.png"]
    assert len(found(None)) == 4


def test_list_screenshots_newest_first(db):
    first = catalog.create_screenshot(db, "1.png", "1.png")
    second = catalog.create_screenshot(db, "2.png", "2.png")
    assert [s.id for s in catalog.list_screenshots(db)] == [second.id, first.id]


def test_set_published_keeps_first_url(db):
    shot = catalog.create_screenshot(db, "1.png", "1.png")
    catalog.set_published(db, shot.id, "https://wp.example/1.png", 10)
    again = catalog.set_published(db, shot.id, "https://wp.example/other.png", 11)
    assert (again.wp_image_url, again.wp_attachment_id) == ("https://wp.example/1.png", 10)


def test_settings_default_when_absent(db):
    assert catalog.get_setting(db, "customPrompt") == DEFAULT_INSTRUCTION
    assert catalog.get_setting(db, "gemini_model") == DEFAULT_MODEL
    assert catalog.is_default_setting(db, "customPrompt")


def test_setting_equal_to_default_is_deleted(db):
    catalog.set_setting(db, "customPrompt", "List every number you see.")
    assert catalog.get_setting(db, "customPrompt") == "List every number you see."
    assert not catalog.is_default_setting(db, "customPrompt")

    catalog.set_setting(db, "customPrompt", DEFAULT_INSTRUCTION)
    assert catalog.is_default_setting(db, "customPrompt")

    catalog.set_setting(db, "gemini_model", "gemini-2.5-pro")
    catalog.set_setting(db, "gemini_model", "")
    assert catalog.get_setting(db, "gemini_model") == DEFAULT_MODEL


def test_settings_are_scoped_by_owner(db):
    catalog.set_setting(db, "gemini_model", "gemini-2.5-flash")
    catalog.set_setting(db, "gemini_model", "gemini-2.5-pro", owner_id="alice")

    assert catalog.get_setting(db, "gemini_model", owner_id="alice") == "gemini-2.5-pro"
    assert catalog.get_setting(db, "gemini_model", owner_id="bob") == DEFAULT_MODEL
    assert catalog.get_setting(db, "gemini_model") == "gemini-2.5-flash"


def test_owner_reset_to_default_ignores_global_value(db):
    catalog.set_setting(db, "customPrompt", "Global prompt.")
    catalog.set_setting(db, "customPrompt", "Alice prompt.", owner_id="alice")

    catalog.set_setting(db, "customPrompt", DEFAULT_INSTRUCTION, owner_id="alice")

    assert catalog.get_setting(db, "customPrompt", owner_id="alice") == DEFAULT_INSTRUCTION
    assert catalog.is_default_setting(db, "customPrompt", owner_id="alice")
    assert catalog.get_setting(db, "customPrompt") == "Global prompt."
    assert not catalog.is_default_setting(db, "customPrompt")


def test_unknown_setting_rejected(db):
    with pytest.raises(ValidationError):
        catalog.set_setting(db, "no_such_key", "x")


def test_folder_prompt_default_clears(db):
    folder = catalog.create_folder(db, "a")
    assert catalog.update_folder_prompt(db, folder.id, "Focus on code").custom_prompt == "Focus on code"
    assert catalog.update_folder_prompt(db, folder.id, DEFAULT_INSTRUCTION).custom_prompt is None


def test_migrate_folder_paths(db):
    db.add(Folder(name="SE Ranking", path="C:\\Users\\me\\SE Ranking"))
    db.add(Folder(name="Other", path="/srv/shots/Other"))
    db.commit()
    catalog.create_folder(db, "Plain")

    results = catalog.migrate_folder_paths(db)

    assert [r["newPath"] for r in results] == ["SE Ranking", "Other", "Plain"]
    assert [r["migrated"] for r in results] == [True, True, False]
    assert not any(r["migrated"] for r in catalog.migrate_folder_paths(db))
