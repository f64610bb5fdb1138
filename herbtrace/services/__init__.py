"""
herbtrace.services: workflow decision functions and the submission service.

Decision modules (status_deriver, portal_policy, transition_validator,
worklist) are pure: they take domain objects and return values, never
touching the ledger.  submission_service is the only module that
combines them with ledger writes.
"""
