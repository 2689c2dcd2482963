from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .geometry import BoundingBox


class LayoutEntry(BaseModel):
    """Normalized position as fractions of diagram width/height."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)

    def scale(self, image_width: float, image_height: float) -> BoundingBox:
        return BoundingBox.from_xywh(
            self.x * image_width,
            self.y * image_height,
            self.width * image_width,
            self.height * image_height,
        )


class CalibrationLayout(BaseModel):
    """Resolution-independent marker positions for one diagram family."""

    model_config = ConfigDict(frozen=True)

    name: str
    entries: dict[str, LayoutEntry]
    groups: dict[str, list[str]] = {}

    @classmethod
    def from_json_file(cls, path: str | Path) -> "CalibrationLayout":
        return cls.model_validate_json(Path(path).read_text())

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self.entries)

    def scaled(self, marker_id: str, image_width: float, image_height: float) -> BoundingBox | None:
        entry = self.entries.get(marker_id)
        if entry is None:
            return None
        return entry.scale(image_width, image_height)

    def group_of(self, marker_id: str) -> str | None:
        for name, members in self.groups.items():
            if marker_id in members:
                return name
        return None


def _entry(x: float, y: float, w: float, h: float) -> LayoutEntry:
    return LayoutEntry(x=x, y=y, width=w, height=h)


# VAG engine, front view.
ENGINE_FRONT_LAYOUT = CalibrationLayout(
    name="engine_front",
    entries={
        "16": _entry(0.40, 0.35, 0.15, 0.20),
        "17": _entry(0.42, 0.25, 0.10, 0.15),
        "15": _entry(0.38, 0.30, 0.08, 0.10),
        "24": _entry(0.15, 0.10, 0.08, 0.08),
        "25": _entry(0.20, 0.20, 0.08, 0.08),
        "26": _entry(0.25, 0.25, 0.07, 0.07),
        "12": _entry(0.65, 0.25, 0.10, 0.10),
        "11": _entry(0.60, 0.30, 0.08, 0.08),
        "10": _entry(0.55, 0.15, 0.09, 0.09),
        "3": _entry(0.53, 0.13, 0.06, 0.06),
        "23": _entry(0.25, 0.45, 0.08, 0.06),
        "14": _entry(0.20, 0.40, 0.07, 0.07),
        "13": _entry(0.30, 0.35, 0.07, 0.07),
        "18": _entry(0.22, 0.48, 0.08, 0.06),
        "21": _entry(0.20, 0.65, 0.07, 0.07),
        "22": _entry(0.25, 0.70, 0.07, 0.07),
        "19": _entry(0.45, 0.60, 0.08, 0.08),
        "20": _entry(0.50, 0.65, 0.06, 0.06),
        "0": _entry(0.05, 0.05, 0.05, 0.05),
        "2": _entry(0.10, 0.08, 0.05, 0.05),
        "5": _entry(0.35, 0.40, 0.05, 0.05),
        "8": _entry(0.45, 0.15, 0.05, 0.05),
        "9": _entry(0.50, 0.12, 0.05, 0.05),
        "-6": _entry(0.03, 0.75, 0.06, 0.05),
    },
    groups={
        "engine": ["16", "17", "15", "0"],
        "cooling": ["24", "25", "26", "-6"],
        "turbo": ["10", "11", "12", "3"],
        "timing": ["13", "14", "18", "23"],
        "mounting": ["21", "22"],
        "lubrication": ["19", "20"],
        "ignition": ["8", "9"],
        "sensors": ["2", "5"],
    },
)
