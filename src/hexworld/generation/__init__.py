"""
Tile generation module for hexworld.

This module handles the full pipeline for generating artwork for a single
hexagonal tile, including:
- Hex grid geometry and eligibility (adjacency to existing tiles)
- Procedural terrain/biome fallbacks for empty tiles
- Per-user rate limiting and concurrent-generation locking
- Building the neighbor-aware context image and calling the inpainting API
- Persisting the generated tile, its thumbnail and its metadata
"""
