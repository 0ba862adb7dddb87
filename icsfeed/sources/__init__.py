"""Calendar sources: HTTP fetching, the prepared-data cache and the event store."""
