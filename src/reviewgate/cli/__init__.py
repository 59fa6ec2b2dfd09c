"""Command-line sub-applications for reviewgate."""
