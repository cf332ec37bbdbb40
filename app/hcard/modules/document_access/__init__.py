"""
Document access module.

Short-lived HMAC-signed links gate every read of a document's bytes. Each fetch
attempt is recorded in ``document_access_logs``.
"""
