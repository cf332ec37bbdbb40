"""
Documents module: uploads and the per-slot review state machine.

- A slot is (application, document type); at most one upload is current
- Verified is terminal for the slot
- A referred slot reopens only through a new upload
"""
