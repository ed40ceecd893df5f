from pathlib import Path
from typing import List, Optional
import json
import logging

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# Pydantic models for saved batch-build selections
class BatchPresetItem(BaseModel):
    assembly_id: str  # Assembly id or name, resolved against the snapshot when used
    quantity: float = Field(gt=0)

class BatchPreset(BaseModel):
    name: str
    items: List[BatchPresetItem]

class PresetsFile(BaseModel):
    presets: List[BatchPreset] = []
    filepath: Optional[Path] = None

PRESETS_FILE_PATH = Path("presets.json")

def load_presets_from_file(filepath: Path = PRESETS_FILE_PATH) -> PresetsFile:
    """
    Loads batch presets from a JSON file.
    If the file doesn't exist, is empty, or contains invalid JSON/data,
    it returns an empty PresetsFile object and logs an error.
    """
    if not filepath.exists():
        logger.info(f"Presets file not found at {filepath}. Returning empty presets.")
        return PresetsFile(presets=[], filepath=filepath)

    try:
        content = filepath.read_text(encoding="utf-8")
        if not content.strip():
            logger.info(f"Presets file at {filepath} is empty. Returning empty presets.")
            return PresetsFile(presets=[], filepath=filepath)
        raw_data = json.loads(content)
        if not isinstance(raw_data, dict):
            logger.error(f"Presets file at {filepath} does not contain a JSON object. Returning empty presets.")
            return PresetsFile(presets=[], filepath=filepath)

        # 'filepath' is set explicitly below, never read from the file
        raw_data.pop('filepath', None)
        loaded_presets_file = PresetsFile(**raw_data, filepath=filepath)
        logger.info(f"Successfully loaded presets from {filepath}.")
        return loaded_presets_file
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error loading presets from {filepath}: {e}. Returning empty presets.")
        return PresetsFile(presets=[], filepath=filepath)
    except ValidationError as e: # Pydantic's validation error
        logger.error(f"Data validation error loading presets from {filepath}: {e}. Returning empty presets.")
        return PresetsFile(presets=[], filepath=filepath)
    except OSError as e:
        logger.error(f"Could not read presets from {filepath}: {e}. Returning empty presets.")
        return PresetsFile(presets=[], filepath=filepath)

def save_presets_to_file(presets_data: PresetsFile, filepath: Path = PRESETS_FILE_PATH) -> None:
    """
    Saves the given PresetsFile data to a JSON file.
    Raises OSError if the file cannot be written.
    """
    try:
        if not filepath.parent.exists():
            filepath.parent.mkdir(parents=True, exist_ok=True)
        json_string = presets_data.model_dump_json(indent=2, exclude={"filepath"})
        filepath.write_text(json_string, encoding="utf-8")
        logger.info(f"Presets saved to {filepath}")
    except OSError as e:
        logger.error(f"Error saving presets to {filepath}: {e}")
        raise

def add_or_update_preset(presets_data: PresetsFile, new_preset: BatchPreset) -> PresetsFile:
    """
    Adds a new preset to the PresetsFile or updates an existing one if the name matches.
    Returns the updated PresetsFile object.
    """
    if not new_preset.name.strip():
        logger.warning("Attempted to add/update preset with empty name. Operation skipped.")
        return presets_data

    updated_presets_list = list(presets_data.presets) # Mutable copy
    for i, preset in enumerate(updated_presets_list):
        if preset.name == new_preset.name:
            updated_presets_list[i] = new_preset
            logger.info(f"Updated existing preset: '{new_preset.name}'.")
            break
    else:
        updated_presets_list.append(new_preset)
        logger.info(f"Added new preset: '{new_preset.name}'.")

    return PresetsFile(presets=updated_presets_list, filepath=presets_data.filepath)

def delete_preset_by_name(presets_data: PresetsFile, preset_name: str) -> PresetsFile:
    """
    Deletes a preset by its name from the PresetsFile.
    Returns the updated PresetsFile object. If preset_name not found, returns the same presets.
    """
    if not preset_name.strip():
        logger.warning("Attempted to delete preset with empty name. Operation skipped.")
        return presets_data

    initial_count = len(presets_data.presets)
    updated_presets_list = [
        preset for preset in presets_data.presets if preset.name != preset_name
    ]

    if len(updated_presets_list) < initial_count:
        logger.info(f"Deleted preset: '{preset_name}'.")
    else:
        logger.info(f"Preset '{preset_name}' not found for deletion.")

    return PresetsFile(presets=updated_presets_list, filepath=presets_data.filepath)

def get_preset_names(presets_data: PresetsFile) -> List[str]:
    if not presets_data or not presets_data.presets:
        return []
    return [preset.name for preset in presets_data.presets]

def get_preset_by_name(presets_data: PresetsFile, name: str) -> Optional[BatchPreset]:
    """
    Retrieves a preset by its name from the PresetsFile.
    Returns the BatchPreset object if found, otherwise None.
    """
    if not name.strip():
        logger.warning("Attempted to get preset with empty name.")
        return None

    for preset in presets_data.presets:
        if preset.name == name:
            return preset
    logger.info(f"Preset '{name}' not found.")
    return None
