"""HTTP routes over the database facade."""
