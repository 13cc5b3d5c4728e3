"""Workflow engine services. Blueprints call into these; they own all writes."""
