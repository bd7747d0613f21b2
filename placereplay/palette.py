import re

# 2017 dump stores the colour as an index into this 16 colour palette
PALETTE_2017 = {
    0: "#FFFFFF",
    1: "#E4E4E4",
    2: "#888888",
    3: "#222222",
    4: "#FFA7D1",
    5: "#E50000",
    6: "#E59500",
    7: "#A06A42",
    8: "#E5D900",
    9: "#94E044",
    10: "#02BE01",
    11: "#00D3DD",
    12: "#0083C7",
    13: "#0000EA",
    14: "#CF6EE4",
    15: "#820080",
}

# full 32 colour palette from the end of the 2022 event
COLOR_NAME_TO_HEX = {
    "burgundy": "#6D001A",
    "dark red": "#BE0039",
    "red": "#FF4500",
    "orange": "#FFA800",
    "yellow": "#FFD635",
    "pale yellow": "#FFF8B8",
    "dark green": "#00A368",
    "green": "#00CC78",
    "light green": "#7EED56",
    "dark teal": "#00756F",
    "teal": "#009EAA",
    "light teal": "#00CCC0",
    "dark blue": "#2450A4",
    "blue": "#3690EA",
    "light blue": "#51E9F4",
    "indigo": "#493AC1",
    "periwinkle": "#6A5CFF",
    "lavender": "#94B3FF",
    "dark purple": "#811E9F",
    "purple": "#B44AC0",
    "pale purple": "#E4ABFF",
    "magenta": "#DE107F",
    "pink": "#FF3881",
    "light pink": "#FF99AA",
    "dark brown": "#6D482F",
    "brown": "#9C6926",
    "beige": "#FFB470",
    "black": "#000000",
    "dark gray": "#515252",
    "gray": "#898D90",
    "light gray": "#D4D7D9",
    "white": "#FFFFFF",
}

HEX_TO_COLOR_NAME = {v: k.title() for k, v in COLOR_NAME_TO_HEX.items()}

_HEX_RE = re.compile(r"^#?([0-9A-Fa-f]{6})$")


def normalise_colour(value: str) -> str:
    """
    Turn a hex code ("#ff4500", "FF4500") or a 2022 palette name ("Dark Red",
    "dark_red") into the canonical "#RRGGBB" form. Raises ValueError otherwise.
    """
    raw = value.strip()
    m = _HEX_RE.match(raw)
    if m:
        return "#" + m.group(1).upper()

    name = raw.lower().replace("_", " ").replace("-", " ")
    name = " ".join(name.split())
    # accept the british spelling people tend to type
    name = name.replace("grey", "gray")
    if name in COLOR_NAME_TO_HEX:
        return COLOR_NAME_TO_HEX[name]
    raise ValueError(f"unknown colour: {value!r}")


def colour_name(hex_code: str | None) -> str:
    if hex_code is None:
        return "Unset"
    return HEX_TO_COLOR_NAME.get(hex_code, hex_code)
