"""Domain layer: models, enums, events and pure scheduling rules."""
