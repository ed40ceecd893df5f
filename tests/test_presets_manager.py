import pytest
import json
from unittest.mock import patch

from assembly_stock_calculator.presets_manager import (
    load_presets_from_file,
    save_presets_to_file,
    add_or_update_preset,
    delete_preset_by_name,
    get_preset_names,
    get_preset_by_name,
)
from assembly_stock_calculator.presets_manager import (
    BatchPresetItem,
    BatchPreset,
    PresetsFile,
)


@pytest.fixture
def weekly_preset():
    return BatchPreset(name="Weekly Run", items=[
        BatchPresetItem(assembly_id="a1", quantity=5),
        BatchPresetItem(assembly_id="a2", quantity=4),
    ])


def test_load_presets_from_non_existent_file(tmp_path):
    """Loading from a missing file returns an empty PresetsFile bound to that path."""
    non_existent_file = tmp_path / "non_existent_presets.json"
    presets_file = load_presets_from_file(non_existent_file)
    assert presets_file == PresetsFile(presets=[], filepath=non_existent_file)

def test_load_presets_from_empty_file(tmp_path):
    empty_file = tmp_path / "presets.json"
    empty_file.write_text("  \n")
    assert load_presets_from_file(empty_file).presets == []

def test_load_presets_from_malformed_json_file(tmp_path, caplog):
    """
    Malformed JSON is logged and yields an empty PresetsFile.
    """
    malformed_file = tmp_path / "malformed_presets.json"
    malformed_file.write_text("this is not json")

    presets_file = load_presets_from_file(malformed_file)
    assert presets_file == PresetsFile(presets=[], filepath=malformed_file)
    assert "JSON decode error loading presets from" in caplog.text
    assert str(malformed_file) in caplog.text

@pytest.mark.parametrize("content", [
    json.dumps(["not", "an", "object"]),
    json.dumps({"presets": [{"name": "Bad", "items": [{"assembly_id": "a1", "quantity": 0}]}]}),
])
def test_load_presets_with_invalid_data(tmp_path, content):
    invalid_file = tmp_path / "presets.json"
    invalid_file.write_text(content)
    assert load_presets_from_file(invalid_file).presets == []

def test_load_presets_from_valid_file(tmp_path):
    valid_file = tmp_path / "valid_presets.json"
    valid_file.write_text(json.dumps({
        "presets": [{"name": "Weekly Run", "items": [{"assembly_id": "a1", "quantity": 5}]}],
        "filepath": "/somewhere/else.json",
    }))

    loaded = load_presets_from_file(valid_file)

    assert loaded.filepath == valid_file
    assert loaded.presets == [BatchPreset(name="Weekly Run", items=[BatchPresetItem(assembly_id="a1", quantity=5)])]

def test_save_presets_to_file(tmp_path, weekly_preset):
    target = tmp_path / "nested" / "presets.json"

    save_presets_to_file(PresetsFile(presets=[weekly_preset], filepath=target), target)

    saved = json.loads(target.read_text())
    assert "filepath" not in saved
    assert saved["presets"][0]["name"] == "Weekly Run"
    assert saved["presets"][0]["items"][1] == {"assembly_id": "a2", "quantity": 4.0}
    assert load_presets_from_file(target).presets == [weekly_preset]

@patch("pathlib.Path.write_text", side_effect=OSError("disk full"))
def test_save_presets_to_file_io_error(mock_write_text, tmp_path, caplog):
    target = tmp_path / "presets.json"
    with pytest.raises(OSError):
        save_presets_to_file(PresetsFile(presets=[]), target)
    assert "Error saving presets to" in caplog.text

def test_add_new_preset(weekly_preset):
    updated = add_or_update_preset(PresetsFile(presets=[]), weekly_preset)
    assert get_preset_names(updated) == ["Weekly Run"]

def test_update_existing_preset(weekly_preset):
    presets_data = PresetsFile(presets=[weekly_preset, BatchPreset(name="Other", items=[])])
    replacement = BatchPreset(name="Weekly Run", items=[BatchPresetItem(assembly_id="a3", quantity=1)])

    updated = add_or_update_preset(presets_data, replacement)

    assert get_preset_names(updated) == ["Weekly Run", "Other"]
    assert get_preset_by_name(updated, "Weekly Run").items[0].assembly_id == "a3"
    # The original object is left alone
    assert presets_data.presets[0].items[0].assembly_id == "a1"

def test_add_preset_with_blank_name_is_skipped(weekly_preset):
    presets_data = PresetsFile(presets=[weekly_preset])
    assert add_or_update_preset(presets_data, BatchPreset(name="  ", items=[])) is presets_data

def test_delete_existing_preset(weekly_preset):
    updated = delete_preset_by_name(PresetsFile(presets=[weekly_preset]), "Weekly Run")
    assert updated.presets == []

def test_delete_non_existent_preset(weekly_preset):
    updated = delete_preset_by_name(PresetsFile(presets=[weekly_preset]), "Nope")
    assert get_preset_names(updated) == ["Weekly Run"]

def test_get_preset_names_empty():
    assert get_preset_names(PresetsFile()) == []

def test_get_preset_by_name_non_existent(weekly_preset):
    presets_data = PresetsFile(presets=[weekly_preset])
    assert get_preset_by_name(presets_data, "Missing") is None
    assert get_preset_by_name(presets_data, "") is None
