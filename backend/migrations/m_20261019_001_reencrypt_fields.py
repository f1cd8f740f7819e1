"""
Migration: reencrypt_fields
Created: 2026-10-19T09:12:44.318205

Description:
    Re-seals every encrypted field under the active encryption key version and
    records the new version on each user. Run after adding a key to
    ENCRYPTION_KEYS and pointing ENCRYPTION_ACTIVE_VERSION at it. The old key
    must stay configured until this migration has completed.
"""

from google.cloud.firestore_v1 import Client

from app.crypto.codec import FieldCodec, get_codec

ENCRYPTED_FIELDS = {
    "expenses": ("amount_encrypted", "impact_amount_encrypted", "description_encrypted"),
    "expense_groups": ("title_encrypted", "notes_encrypted"),
    "recurring_expenses": ("amount_encrypted", "description_encrypted"),
    "incomes": ("amount_encrypted", "description_encrypted"),
    "recurring_incomes": ("amount_encrypted", "description_encrypted"),
    "category_limits": ("limit_amount_encrypted",),
}

BATCH_SIZE = 500


def reencrypt_document(data: dict, fields: tuple[str, ...], codec: FieldCodec) -> dict:
    """Return the fields of ``data`` whose blobs changed after re-sealing."""
    update = {}
    for field in fields:
        blob = data.get(field)
        resealed = codec.reencrypt(blob)
        if resealed != blob:
            update[field] = resealed
    return update


def upgrade(db: Client, codec: FieldCodec | None = None) -> dict:
    """
    Re-encrypt all collections holding encrypted fields.

    Args:
        db: Firestore client instance
        codec: Codec to use; defaults to the application codec

    Returns:
        Number of updated documents per collection.
    """
    codec = codec or get_codec()
    summary: dict[str, int] = {}

    for collection_name, fields in ENCRYPTED_FIELDS.items():
        batch = db.batch()
        pending = 0
        updated = 0
        for doc in db.collection(collection_name).stream():
            update = reencrypt_document(doc.to_dict() or {}, fields, codec)
            if not update:
                continue
            batch.update(doc.reference, update)
            pending += 1
            updated += 1
            if pending >= BATCH_SIZE:
                batch.commit()
                batch = db.batch()
                pending = 0
        if pending:
            batch.commit()
        summary[collection_name] = updated

    users = 0
    for doc in db.collection("users").stream():
        if (doc.to_dict() or {}).get("encryption_key_version") != codec.active_version:
            doc.reference.update({"encryption_key_version": codec.active_version})
            users += 1
    summary["users"] = users

    return summary
