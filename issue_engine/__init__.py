"""Issue detection and recommendation engine."""
