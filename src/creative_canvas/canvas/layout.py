from __future__ import annotations

from creative_canvas.canvas.models import Position

# Canvas coordinates only; nothing semantic depends on these.
ORIGIN = Position(x=400, y=100)
PRODUCT_SPACING = 500
CONCEPT_SPACING = 320
CONCEPT_DROP = 400
CREATIVE_DROP = 450
INSIGHT_ORIGIN = Position(x=100, y=500)
INSIGHT_COLUMNS = 3


def product_position(existing_products: int) -> Position:
    """New products go to the right of the existing ones."""
    return Position(x=ORIGIN.x + existing_products * PRODUCT_SPACING, y=ORIGIN.y)


def concept_position(anchor: Position, index: int) -> Position:
    # Centered under the anchor for the usual five concepts.
    return Position(x=anchor.x + (index - 2) * CONCEPT_SPACING, y=anchor.y + CONCEPT_DROP)


def below(anchor: Position, drop: float = CREATIVE_DROP) -> Position:
    return Position(x=anchor.x, y=anchor.y + drop)


def insight_position(index: int) -> Position:
    col = index % INSIGHT_COLUMNS
    row = index // INSIGHT_COLUMNS
    return Position(x=INSIGHT_ORIGIN.x + col * CONCEPT_SPACING, y=INSIGHT_ORIGIN.y + row * CONCEPT_DROP)
