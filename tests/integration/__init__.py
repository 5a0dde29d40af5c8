"""
Integration tests for LevelPark

These tests run the rule engine together with its collaborators:
1. Entry, fining and settlement through the command handler
2. Mirroring state to SQLite and restoring it on restart
3. Event delivery to the in-process bus and a message queue
4. Reports built from the resulting lot
"""
