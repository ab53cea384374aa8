"""
hexworld - an unbounded hexagonal tile world with AI-generated tiles.
"""
