"""
Driver verification service.

    - transitions: application state machine (no I/O)
    - workflow: submit / list / decide against the database
"""
