"""Quality filtering and place matching for scraped place photos."""
