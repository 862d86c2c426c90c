from typing import Dict, Union

from pydantic import RootModel

SettingValue = Union[str, bool, int, float, None]


class SettingsUpdate(RootModel[Dict[str, SettingValue]]):
    """Arbitrary key/value pairs; unknown keys are stored as given."""
