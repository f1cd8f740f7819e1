# Firestore Migrations
#
# Versioned Python scripts that transform stored documents. Each script
# exposes ``upgrade(db)``; completed runs are recorded in ``_migrations``.
#
# Usage (from backend/):
#   python -m migrations.runner migrate
#   python -m migrations.runner status
#   python -m migrations.runner create <name>
