"""
Pure recruitment pipeline rules.

Nothing in this package touches the database or Flask: every function takes an
explicit snapshot and returns a new status, action or verdict. The `actions`
package loads snapshots, calls these rules and persists the result.
"""
