"""Repository classes, one per aggregate."""
