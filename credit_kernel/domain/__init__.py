"""Pure domain primitives shared by every credit package."""
