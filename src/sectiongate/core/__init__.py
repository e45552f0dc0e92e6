"""sectiongate core engines."""
