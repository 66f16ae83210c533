"""Entry-point runners for the narration engine."""
