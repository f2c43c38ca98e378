"""threadkeeper command line interface."""
