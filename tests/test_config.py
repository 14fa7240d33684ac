import json

import pytest

from colourreproduction.config import MatchingSettings


def test_defaults():
    settings = MatchingSettings()

    assert settings.threshold == 1.0
    assert settings.max_iterations == 8
    assert settings.max_neighbors == 10
    assert settings.scaling_constant == 2.0
    assert settings.domain == (0.0, 1.0)
    assert settings.quantization_levels is None
    assert settings.use_tessellation


@pytest.mark.parametrize("kwargs", [
    {"threshold": -0.1},
    {"max_iterations": -1},
    {"max_neighbors": 0},
    {"scaling_constant": 0.0},
    {"domain": (1.0, 0.0)},
    {"quantization_levels": 0},
    {"max_degenerate_retries": -1},
])
def test_invalid_values_raise(kwargs):
    with pytest.raises(ValueError):
        MatchingSettings(**kwargs)


def test_dict_survives_json():
    settings = MatchingSettings(threshold=0.5, quantization_levels=255, domain=[0, 1])

    restored = MatchingSettings.from_dict(json.loads(json.dumps(settings.to_dict())))

    assert restored == settings
    assert isinstance(restored.domain, tuple)


def test_unknown_keys_are_ignored():
    restored = MatchingSettings.from_dict({"threshold": 2.0, "colour_space": "lab"})
    assert restored.threshold == 2.0
