from pydantic import BaseModel, ConfigDict, model_validator


class BoundingBox(BaseModel):
    """Axis-aligned box in image pixels; ``x_max``/``y_max`` are exclusive."""

    model_config = ConfigDict(frozen=True)

    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.x_max < self.x_min or self.y_max < self.y_min:
            raise ValueError(
                f"inverted box: ({self.x_min}, {self.y_min}, {self.x_max}, {self.y_max})"
            )
        return self

    @classmethod
    def from_xywh(cls, x: float, y: float, width: float, height: float) -> "BoundingBox":
        return cls(
            x_min=x,
            y_min=y,
            x_max=x + max(0.0, width),
            y_max=y + max(0.0, height),
        )

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x_min + self.x_max) / 2.0, (self.y_min + self.y_max) / 2.0

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            x_min=min(self.x_min, other.x_min),
            y_min=min(self.y_min, other.y_min),
            x_max=max(self.x_max, other.x_max),
            y_max=max(self.y_max, other.y_max),
        )

    def translate(self, dx: float, dy: float) -> "BoundingBox":
        return BoundingBox(
            x_min=self.x_min + dx,
            y_min=self.y_min + dy,
            x_max=self.x_max + dx,
            y_max=self.y_max + dy,
        )

    def clamp(self, width: float, height: float) -> "BoundingBox":
        """Shift (and if needed shrink) the box so it lies inside a width x height image."""
        box_w = min(self.width, width)
        box_h = min(self.height, height)
        x = min(max(0.0, self.x_min), width - box_w)
        y = min(max(0.0, self.y_min), height - box_h)
        return BoundingBox.from_xywh(x, y, box_w, box_h)

    def contained_in(self, width: float, height: float) -> bool:
        return self.x_min >= 0 and self.y_min >= 0 and self.x_max <= width and self.y_max <= height
