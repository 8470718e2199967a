"""Payment-event processing: authentication, routing, subscription and credit ledgers."""
