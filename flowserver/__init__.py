"""HTTP service exposing workspace flow runs."""
