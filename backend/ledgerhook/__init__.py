"""Payment-event processor for the dashboard's credit billing."""
