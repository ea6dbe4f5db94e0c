from __future__ import annotations

import re
from typing import Iterable, Optional

from services.metar import CloudLayer

ICON_NAMES = ("sun", "moon", "cloud", "partly", "rain", "snow", "thunder", "fog")

# Checked in order; the first pattern found in the present-weather tokens wins.
_WEATHER_ICONS = (
    ("thunder", re.compile(r"TS")),
    ("rain", re.compile(r"RA|DZ|SH")),
    ("snow", re.compile(r"SN|SG|GR")),
    ("fog", re.compile(r"FG|BR|HZ|FU")),
)
_OVERCAST = {"OVC", "BKN"}
_PARTLY = {"FEW", "SCT"}


def classify_conditions(weather: Optional[Iterable[str]], clouds: Optional[Iterable[CloudLayer]]) -> str:
    """Pick the icon name summarising present weather and cloud cover."""
    weather_text = " ".join(weather or ())
    for icon, pattern in _WEATHER_ICONS:
        if pattern.search(weather_text):
            return icon
    covers = {layer.type for layer in clouds or ()}
    if covers & _OVERCAST:
        return "cloud"
    if covers & _PARTLY:
        return "partly"
    return "sun"
