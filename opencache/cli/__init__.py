"""opencache command line."""
