"""Clinical hierarchy: studies, subjects, study events and CRF instances."""
