"""LevelCraft — XP, levels and level-gated rewards."""

__version__ = "0.1.0"
