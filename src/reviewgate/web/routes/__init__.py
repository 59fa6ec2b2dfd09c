"""Route factories for the reviewgate web application."""
