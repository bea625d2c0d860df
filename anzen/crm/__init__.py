"""CRM: contact database, inquiry grid, reminders."""
