"""Permission tree model, cascade engine and ceiling resolver."""
