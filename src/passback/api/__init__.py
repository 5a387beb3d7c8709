"""HTTP surface for the embedded exercise and administrators."""
