"""TaskHub API: projects, tasks, time tracking and quick links over a JSON REST API."""
