"""
Recognizer configuration.

The recognizer ships with a YAML file describing its character set and
input geometry.
"""

from dataclasses import dataclass
from typing import Any

import yaml

DEFAULT_PAD_CHAR = "_"
DEFAULT_IMG_WIDTH = 140
DEFAULT_IMG_HEIGHT = 70


def parse_config_text(text: str) -> dict[str, Any]:
    """
    Load the recognizer config into a dict.

    A document that is empty or not a mapping yields an empty dict.

    Raises:
        ValueError: If the text is not valid YAML.
    """
    try:
        values = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Recognizer config is not valid YAML: {e}") from e
    return values if isinstance(values, dict) else {}


@dataclass(frozen=True)
class AlprConfig:
    """
    Decoded recognizer settings.

    Attributes:
        max_plate_slots: Number of character slots the recognizer emits.
        alphabet: Vocabulary, one character per class index.
        pad_char: Character marking an empty slot.
        img_width: Recognizer input width.
        img_height: Recognizer input height.
        channels: 3 for RGB input, 1 for grayscale.
    """

    max_plate_slots: int
    alphabet: str
    pad_char: str = DEFAULT_PAD_CHAR
    img_width: int = DEFAULT_IMG_WIDTH
    img_height: int = DEFAULT_IMG_HEIGHT
    channels: int = 1

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> "AlprConfig":
        """Build from parsed key/value pairs, applying defaults."""
        alphabet = values.get("alphabet")
        pad_char = values.get("pad_char")
        return cls(
            max_plate_slots=_positive_int(values.get("max_plate_slots"), 0),
            alphabet=alphabet if isinstance(alphabet, str) else "",
            pad_char=pad_char if isinstance(pad_char, str) and pad_char else DEFAULT_PAD_CHAR,
            img_width=_positive_int(values.get("img_width"), DEFAULT_IMG_WIDTH),
            img_height=_positive_int(values.get("img_height"), DEFAULT_IMG_HEIGHT),
            channels=3 if values.get("image_color_mode") == "rgb" else 1,
        )

    @classmethod
    def from_text(cls, text: str) -> "AlprConfig":
        """Parse the config file content."""
        return cls.from_mapping(parse_config_text(text))

    @property
    def vocabulary_size(self) -> int:
        """Number of classes per slot."""
        return len(self.alphabet)

    @property
    def is_usable(self) -> bool:
        """True when slots and alphabet are both present."""
        return self.max_plate_slots > 0 and self.vocabulary_size > 0


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
