import uuid
from dataclasses import dataclass, fields, replace
from typing import NamedTuple, Optional

from .settings import MIN_FIELD_HEIGHT, MIN_FIELD_WIDTH

HANDLES = ("nw", "ne", "sw", "se")


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def new_field_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class PageMeta:
    """Geometry of one page in display and PDF content units"""

    index: int
    width: float
    height: float
    original_width: float
    original_height: float
    scale: float

    def __post_init__(self):
        if not self.scale > 0:
            raise ValueError(f"page scale must be positive, got {self.scale}")

    @classmethod
    def from_original(
        cls, index: int, original_width: float, original_height: float, scale: float
    ) -> "PageMeta":
        return cls(
            index=index,
            width=original_width * scale,
            height=original_height * scale,
            original_width=original_width,
            original_height=original_height,
            scale=scale,
        )


class Box(NamedTuple):
    """Display-space rectangle, top-left origin"""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Field:
    """A named rectangle on a page that becomes a text widget on export"""

    id: str
    page_index: int
    x: float
    y: float
    width: float
    height: float
    name: str
    multiline: bool = False
    confidence: Optional[float] = None  # only set for detected fields
    placeholder: Optional[str] = None

    @property
    def box(self) -> Box:
        return Box(self.x, self.y, self.width, self.height)

    def apply(self, patch: "FieldPatch") -> "Field":
        return replace(self, **patch.changes())

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "page_index": self.page_index,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "multiline": self.multiline,
            "name": self.name,
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.placeholder is not None:
            data["placeholder"] = self.placeholder
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Field":
        confidence = data.get("confidence")
        return cls(
            id=str(data.get("id") or new_field_id()),
            page_index=int(data["page_index"]),
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            name=str(data.get("name", "")),
            multiline=bool(data.get("multiline", False)),
            confidence=float(confidence) if confidence is not None else None,
            placeholder=data.get("placeholder"),
        )


@dataclass(frozen=True)
class FieldPatch:
    """Partial update for a Field. Attributes left as None are unchanged."""

    page_index: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    name: Optional[str] = None
    multiline: Optional[bool] = None
    placeholder: Optional[str] = None

    @classmethod
    def from_box(cls, box: Box) -> "FieldPatch":
        return cls(x=box.x, y=box.y, width=box.width, height=box.height)

    def changes(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def fallback_field_name(field: Field) -> str:
    return f"page{field.page_index + 1}_field_{field.id[-4:]}"


def normalize_field_name(field: Field, name: Optional[str]) -> str:
    """Return the trimmed name, or a generated one when it is blank"""
    value = (name or "").strip()
    return value if value else fallback_field_name(field)


def field_fits_page(
    field: Field,
    page: PageMeta,
    min_width: float = MIN_FIELD_WIDTH,
    min_height: float = MIN_FIELD_HEIGHT,
    tolerance: float = 1e-6,
) -> bool:
    return (
        field.page_index == page.index
        and field.x >= -tolerance
        and field.y >= -tolerance
        and field.x + field.width <= page.width + tolerance
        and field.y + field.height <= page.height + tolerance
        and field.width >= min_width - tolerance
        and field.height >= min_height - tolerance
    )


def new_manual_field(
    page: PageMeta,
    x: float,
    y: float,
    existing_on_page: int,
    width: float = 150.0,
    height: float = 24.0,
) -> Field:
    """Create a user placed field at a clicked point, kept inside the page"""
    width = min(width, page.width)
    height = min(height, page.height)
    return Field(
        id=new_field_id(),
        page_index=page.index,
        x=clamp(x, 0, page.width - width),
        y=clamp(y, 0, page.height - height),
        width=width,
        height=height,
        name=f"page{page.index + 1}_manual_{existing_on_page + 1}",
    )


def drag_rect(
    origin: Box,
    page_width: float,
    page_height: float,
    dx: float,
    dy: float,
    handle: Optional[str] = None,
    min_width: float = MIN_FIELD_WIDTH,
    min_height: float = MIN_FIELD_HEIGHT,
) -> Box:
    """Move or resize a rectangle by a pointer displacement.

    Without a handle the rectangle is translated and kept on the page. With one
    of the corner handles ``nw``, ``ne``, ``sw`` or ``se`` the named edges
    follow the pointer while the opposite edges stay put.
    """
    if handle is None:
        return Box(
            clamp(origin.x + dx, 0, page_width - origin.width),
            clamp(origin.y + dy, 0, page_height - origin.height),
            origin.width,
            origin.height,
        )
    if handle not in HANDLES:
        raise ValueError(f"unknown resize handle: {handle!r}")

    x, y, width, height = origin

    if "n" in handle:
        y = clamp(origin.y + dy, 0, origin.y + origin.height - min_height)
        height = clamp(origin.height + (origin.y - y), min_height, page_height)

    if "s" in handle:
        height = clamp(origin.height + dy, min_height, page_height - origin.y)

    if "w" in handle:
        x = clamp(origin.x + dx, 0, origin.x + origin.width - min_width)
        width = clamp(origin.width + (origin.x - x), min_width, page_width)

    if "e" in handle:
        width = clamp(origin.width + dx, min_width, page_width - origin.x)

    x = clamp(x, 0, page_width - width)
    y = clamp(y, 0, page_height - height)
    return Box(x, y, min(width, page_width - x), min(height, page_height - y))
