"""
Applications module: the ownership store.

An application belongs to one applicant and carries the status the document
review drives. Approved, Rejected and Cancelled freeze every slot.
"""
