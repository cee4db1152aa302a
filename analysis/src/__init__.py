"""Analysis pipelines, models and report rendering."""
