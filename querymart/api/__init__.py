"""HTTP API: routes and their pydantic schemas."""
